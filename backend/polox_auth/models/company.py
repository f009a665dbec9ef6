"""Company (tenant) model."""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from polox_auth.models.base import BaseModel


class Company(BaseModel):
    """A tenant of the CRM.

    ``modules`` lists the feature modules the tenant's plan enables; ``"*"``
    enables every module.
    """

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    plan: Mapped[str] = mapped_column(String(50), default="starter", nullable=False)
    modules: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    def __repr__(self) -> str:
        return f"<Company {self.name}>"
