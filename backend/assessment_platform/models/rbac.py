from typing import Any

from sqlalchemy import String, Integer, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from assessment_platform.database import Base, JSONType, generate_id


class RoleDefinition(Base):
    __tablename__ = "roles"

    role_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    role_key: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    role_name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    role_type: Mapped[str] = mapped_column(String(30), default="customer")  # "platform" | "customer"
    is_platform_role: Mapped[bool] = mapped_column(Boolean, default=False)
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    read_only: Mapped[bool] = mapped_column(Boolean, default=False)
    # "all" or a list of navigation item ids (substring-matched)
    navigation: Mapped[Any] = mapped_column(JSONType, default=list)
    banner: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class PermissionDefinition(Base):
    __tablename__ = "permissions"

    permission_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    permission_key: Mapped[str] = mapped_column(String(100), unique=True, index=True)  # "action:resource"
    resource_type: Mapped[str] = mapped_column(String(50))
    action: Mapped[str] = mapped_column(String(50))
    scope: Mapped[str] = mapped_column(String(30), default="tenant")
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"

    role_id: Mapped[str] = mapped_column(ForeignKey("roles.role_id"), primary_key=True)
    permission_id: Mapped[str] = mapped_column(ForeignKey("permissions.permission_id"), primary_key=True)


class UiMenu(Base):
    __tablename__ = "ui_menus"

    menu_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    menu_key: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    label: Mapped[str] = mapped_column(String(100))
    href: Mapped[str] = mapped_column(String(255))
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    keywords: Mapped[list] = mapped_column(JSONType, default=list)
    parent_id: Mapped[str | None] = mapped_column(ForeignKey("ui_menus.menu_id"), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class RoleMenu(Base):
    __tablename__ = "role_menus"

    role_id: Mapped[str] = mapped_column(ForeignKey("roles.role_id"), primary_key=True)
    menu_id: Mapped[str] = mapped_column(ForeignKey("ui_menus.menu_id"), primary_key=True)
