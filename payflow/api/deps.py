# payflow/api/deps.py
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from payflow.core.config import settings
from payflow.schemas.token import TokenPayload
from payflow.services.notifications import NotificationService
from payflow.services.payment.gateway_factory import GatewayFactory, get_gateway_factory

# The `tokenUrl` doesn't have to be a real endpoint in this service,
# it's just for the OpenAPI documentation.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_current_user(token: str = Depends(oauth2_scheme)) -> TokenPayload:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        token_data = TokenPayload(**payload)
    except (JWTError, ValueError):
        # Catches any error from jose or Pydantic validation
        raise credentials_exception

    return token_data


def get_gateways() -> GatewayFactory:
    return get_gateway_factory()


def get_notifier():
    """
    Request-scoped notifier for the routes that send notifications.
    The Kafka producer is opened on the first send and closed after the
    response.
    """
    notifier = NotificationService()
    try:
        yield notifier
    finally:
        notifier.close()


def get_redis():
    from payflow.db.redis import redis_client

    return redis_client
