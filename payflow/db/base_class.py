# payflow/db/base_class.py

from sqlalchemy.orm import declarative_base

# Shared declarative base for every payflow model.
Base = declarative_base()
