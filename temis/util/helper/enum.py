from enum import Enum
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, func, true
from sqlalchemy.orm import declared_attr

# ──────────────────────────────────────────────────────────────────────────────
# Mixins utilitaires
# ──────────────────────────────────────────────────────────────────────────────

class TimestampMixin(object):
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class SuiviMixin(TimestampMixin):
    """Colonnes communes aux tables métier : suppression logique et auteurs."""

    is_active = Column(Boolean, default=True, server_default=true(), nullable=False, index=True)

    @declared_attr
    def created_by(cls):
        return Column(Integer, ForeignKey("utilisateurs.id", ondelete="SET NULL"), nullable=True, index=True)

    @declared_attr
    def updated_by(cls):
        return Column(Integer, ForeignKey("utilisateurs.id", ondelete="SET NULL"), nullable=True)

# ──────────────────────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────────────────────

class TypeLieuEnum(str, Enum):
    IN_SITU = "in_situ"
    FORMATION_OUVERTE = "formation_ouverte"


class StatutInscriptionEnum(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"


class TypeParametreEnum(str, Enum):
    TYPE_INSTITUTION = "type_institution"
    TYPE_FORMATION = "type_formation"
    NIVEAU_FORMATION = "niveau_formation"
    STATUT_FORMATION = "statut_formation"


class TypeNotificationEnum(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class EvenementChangementEnum(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class PeriodeEnum(str, Enum):
    FUTURE = "future"
    PAST = "past"


class CibleRechercheEnum(str, Enum):
    FORMATEURS = "formateurs"
    LIEUX = "lieux"
    CONTACTS = "contacts"
    INSCRIPTION = "inscription"
    GLOBAL = "global"
