from sqlalchemy import Float, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from synthgate.db.base import Base


class CredentialUsage(Base):
    """Usage counters and cooldowns, keyed by a one-way hash of the credential."""

    __tablename__ = "credential_usage"

    key_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    cooldown_until: Mapped[float | None] = mapped_column(Float, nullable=True)


class CredentialSecret(Base):
    """Credentials added at runtime, Fernet-encrypted."""

    __tablename__ = "credential_secrets"

    key_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
