# payflow/crud/crud_audit_log.py
from typing import List, Optional, Any, Dict
from sqlalchemy.orm import Session

from payflow.models.audit_log import AuditLog


class CRUDAuditLog:
    """
    CRUD operations for AuditLog model.

    Note: This is a special CRUD class that only allows create and read operations.
    Audit logs are immutable and cannot be updated or deleted.
    """

    def __init__(self, model):
        self.model = model

    def get(self, db: Session, *, id: str) -> Optional[AuditLog]:
        """Get an audit log entry by ID."""
        return db.query(self.model).filter(self.model.id == id).first()

    def log_action(
        self,
        db: Session,
        *,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        user_id: Optional[str] = None,
        actor_type: str = "user",
        details: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> AuditLog:
        """
        Append an audit entry.

        With commit=False the entry joins the caller's transaction, so it is
        written together with the state change it describes.
        """
        db_obj = self.model(
            action=action,
            actor_type=actor_type,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
        db.add(db_obj)
        if commit:
            db.commit()
            db.refresh(db_obj)
        return db_obj

    def get_by_entity(
        self,
        db: Session,
        *,
        entity_type: str,
        entity_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Get audit logs for a specific entity."""
        return (
            db.query(self.model)
            .filter(
                self.model.entity_type == entity_type,
                self.model.entity_id == entity_id,
            )
            .order_by(self.model.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )


audit_log = CRUDAuditLog(AuditLog)
