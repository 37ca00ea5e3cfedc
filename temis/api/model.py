from __future__ import annotations

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Text,
    Enum, ForeignKey, UniqueConstraint, Index,
    Numeric, Boolean, text, func
)
from sqlalchemy.orm import relationship

from temis.util.helper.enum import (
    StatutInscriptionEnum, SuiviMixin, TimestampMixin, TypeLieuEnum, TypeParametreEnum
)
from temis.util.db.database import Base


# ──────────────────────────────────────────────────────────────
# UTILISATEUR (comptes de l'équipe administrative)
# ──────────────────────────────────────────────────────────────
class Utilisateur(Base, TimestampMixin):
    __tablename__ = "utilisateurs"

    id = Column(Integer, primary_key=True)
    email = Column(String(120), unique=True, index=True, nullable=False)
    nom = Column(String(100), nullable=False)
    prenom = Column(String(100), nullable=False)
    password = Column(String(255), nullable=False)
    actif = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)


# ──────────────────────────────────────────────────────────────
# FORMATEUR
# ──────────────────────────────────────────────────────────────
class Formateur(Base, SuiviMixin):
    __tablename__ = "formateurs"

    id = Column(Integer, primary_key=True)
    nom = Column(String(100), nullable=False, index=True)
    prenom = Column(String(100), nullable=False, index=True)
    email = Column(String(120), nullable=False, index=True)
    telephone = Column(String(30), nullable=True)
    adresse = Column(String(255), nullable=True)
    code_postal = Column(String(20), nullable=True)
    ville = Column(String(120), nullable=True)


# ──────────────────────────────────────────────────────────────
# PARTICIPANT (stagiaire ou contact responsable d'une institution)
# ──────────────────────────────────────────────────────────────
class Participant(Base, SuiviMixin):
    __tablename__ = "participants"

    id = Column(Integer, primary_key=True)
    nom = Column(String(100), nullable=False, index=True)
    prenom = Column(String(100), nullable=False, index=True)
    email = Column(String(120), nullable=False, index=True)
    telephone = Column(String(30), nullable=True)
    fonction = Column(String(120), nullable=True)
    is_responsable = Column(Boolean, default=False, nullable=False, index=True)

    # Champs institution, renseignés uniquement pour un responsable
    type_institution = Column(String(120), nullable=True)
    nom_institution = Column(String(255), nullable=True)
    rue = Column(String(255), nullable=True)
    code_postal = Column(String(20), nullable=True)
    ville = Column(String(120), nullable=True)
    telephone_institution = Column(String(30), nullable=True)
    adresse_facturation = Column(Text, nullable=True)

    commentaire = Column(Text, nullable=True)


# ──────────────────────────────────────────────────────────────
# LIEU
# ──────────────────────────────────────────────────────────────
class Lieu(Base, SuiviMixin):
    __tablename__ = "lieux"

    id = Column(Integer, primary_key=True)
    nom = Column(String(255), nullable=False, index=True)
    type = Column(Enum(TypeLieuEnum), default=TypeLieuEnum.IN_SITU, nullable=False)
    adresse = Column(String(255), nullable=True)
    code_postal = Column(String(20), nullable=True)
    ville = Column(String(120), nullable=True)
    telephone = Column(String(30), nullable=True)
    email = Column(String(120), nullable=True)
    contact_id = Column(Integer, ForeignKey("participants.id", ondelete="SET NULL"), nullable=True)

    contact = relationship("Participant")
    formations = relationship("Formation", back_populates="lieu")


# ──────────────────────────────────────────────────────────────
# FORMATION
# ──────────────────────────────────────────────────────────────
class Formation(Base, SuiviMixin):
    __tablename__ = "formations"

    id = Column(Integer, primary_key=True)
    titre = Column(String(255), nullable=False, index=True)
    lieu_id = Column(Integer, ForeignKey("lieux.id", ondelete="SET NULL"), nullable=True, index=True)
    categorie = Column(String(120), nullable=True, index=True)
    date = Column(Date, nullable=False, index=True)
    nombre_heures = Column(Integer, default=0, nullable=False)
    nombre_places = Column(Integer, nullable=True)  # null = illimité
    url_visio = Column(String(512), nullable=True)
    telephone = Column(String(30), nullable=True)
    email = Column(String(120), nullable=True)

    # Prix unitaire et prix total sont exclusifs
    prix_unitaire = Column(Numeric(10, 2, asdecimal=False), nullable=True)
    prix_total = Column(Numeric(10, 2, asdecimal=False), nullable=True)
    prix_htva = Column(Boolean, default=True, nullable=False)

    rating = Column(Integer, default=0, nullable=False)
    type = Column(String(50), default="standard", nullable=False)

    lieu = relationship("Lieu", back_populates="formations")
    formateurs = relationship("Formateur", secondary="formation_formateurs", viewonly=True, order_by="Formateur.nom")


# ──────────────────────────────────────────────────────────────
# FORMATION ↔ FORMATEUR
# ──────────────────────────────────────────────────────────────
class FormationFormateur(Base):
    __tablename__ = "formation_formateurs"

    id = Column(Integer, primary_key=True)
    formation_id = Column(Integer, ForeignKey("formations.id", ondelete="CASCADE"), nullable=False)
    formateur_id = Column(Integer, ForeignKey("formateurs.id", ondelete="CASCADE"), nullable=False)
    created_by = Column(Integer, ForeignKey("utilisateurs.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("formation_id", "formateur_id", name="uq_formation_formateur"),
        Index("ix_formation_formateur_formation", "formation_id"),
    )


# ──────────────────────────────────────────────────────────────
# FORMATION ↔ PARTICIPANT (inscriptions)
# ──────────────────────────────────────────────────────────────
class FormationParticipant(Base, SuiviMixin):
    __tablename__ = "formation_participants"

    id = Column(Integer, primary_key=True)
    formation_id = Column(Integer, ForeignKey("formations.id", ondelete="CASCADE"), nullable=False)
    participant_id = Column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)
    statut = Column(Enum(StatutInscriptionEnum), default=StatutInscriptionEnum.PENDING, nullable=False)

    participant = relationship("Participant")

    __table_args__ = (
        UniqueConstraint("formation_id", "participant_id", name="uq_formation_participant"),
        Index("ix_formation_participant_formation", "formation_id"),
    )


# ──────────────────────────────────────────────────────────────
# PARAMÈTRE (valeurs des listes déroulantes)
# ──────────────────────────────────────────────────────────────
class Parametre(Base, SuiviMixin):
    __tablename__ = "parametres"

    id = Column(Integer, primary_key=True)
    type = Column(Enum(TypeParametreEnum), nullable=False, index=True)
    code = Column(String(100), nullable=False)
    libelle = Column(String(255), nullable=False)
    ordre = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index(
            "uq_parametre_type_code_actif", "type", "code", unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


# ──────────────────────────────────────────────────────────────
# EMAIL (messages entrants et réponses)
# ──────────────────────────────────────────────────────────────
class Email(Base, SuiviMixin):
    __tablename__ = "emails"

    id = Column(Integer, primary_key=True)
    from_email = Column(String(255), nullable=False, index=True)
    to_email = Column(String(255), nullable=False, index=True)
    subject = Column(String(500), nullable=True)
    body = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    response = Column(Text, nullable=True)
    response_at = Column(DateTime(timezone=True), nullable=True)
    response_by = Column(Integer, ForeignKey("utilisateurs.id", ondelete="SET NULL"), nullable=True)


# ──────────────────────────────────────────────────────────────
# FACTURE (table FactureDemi suivie en temps réel)
# ──────────────────────────────────────────────────────────────
class FactureDemi(Base):
    __tablename__ = "FactureDemi"

    id = Column(Integer, primary_key=True)
    nom_client = Column(String(255), nullable=False)
    articles = Column(Text, nullable=True)
    prix = Column(Numeric(10, 2, asdecimal=False), default=0, nullable=False)
    nfacture = Column(String(50), nullable=False, index=True)
    quantite = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
