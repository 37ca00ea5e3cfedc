from __future__ import annotations
from datetime import date as DateType, datetime
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from temis.util.helper.enum import (
    EvenementChangementEnum, StatutInscriptionEnum, TypeLieuEnum,
    TypeNotificationEnum, TypeParametreEnum
)

T = TypeVar("T")


def _dedoublonner(ids: Optional[List[int]]) -> Optional[List[int]]:
    if ids is None:
        return None
    return list(dict.fromkeys(ids))


# Pagination
class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    skip: int = 0
    limit: int = 100


# Authentification / Utilisateurs
class LoginRequest(BaseModel):
    email: str = Field(..., max_length=120)
    password: str = Field(..., min_length=1)

class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UtilisateurResponse

class TokenData(BaseModel):
    email: Optional[str] = None
    user_id: Optional[int] = None

class UtilisateurCreate(BaseModel):
    email: str = Field(..., max_length=120)
    nom: str = Field(..., max_length=100)
    prenom: str = Field(..., max_length=100)
    password: str = Field(..., min_length=8, max_length=72)

class UtilisateurResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    nom: str
    prenom: str
    actif: bool
    last_login: Optional[datetime] = None
    created_at: datetime


# Notifications
class Notification(BaseModel):
    id: str
    message: str
    type: TypeNotificationEnum = TypeNotificationEnum.INFO
    timestamp: datetime
    data: Optional[Dict[str, Any]] = None


# Changements temps réel
class ChangeEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: EvenementChangementEnum
    schema_name: str = Field("public", alias="schema")
    table: str
    new: Dict[str, Any] = Field(default_factory=dict)
    old: Dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: datetime = Field(default_factory=datetime.now)


# Formateur Schemas
class FormateurCreate(BaseModel):
    nom: str = Field(..., max_length=100)
    prenom: str = Field(..., max_length=100)
    email: str = Field(..., max_length=120)
    telephone: Optional[str] = Field(None, max_length=30)
    adresse: Optional[str] = Field(None, max_length=255)
    code_postal: Optional[str] = Field(None, max_length=20)
    ville: Optional[str] = Field(None, max_length=120)

class FormateurUpdate(BaseModel):
    nom: Optional[str] = Field(None, max_length=100)
    prenom: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=120)
    telephone: Optional[str] = Field(None, max_length=30)
    adresse: Optional[str] = Field(None, max_length=255)
    code_postal: Optional[str] = Field(None, max_length=20)
    ville: Optional[str] = Field(None, max_length=120)

class FormateurLight(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    prenom: str
    email: str

class FormateurResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    prenom: str
    email: str
    telephone: Optional[str] = None
    adresse: Optional[str] = None
    code_postal: Optional[str] = None
    ville: Optional[str] = None
    is_active: bool
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# Lieu Schemas
class LieuCreate(BaseModel):
    nom: str = Field(..., max_length=255)
    type: TypeLieuEnum = TypeLieuEnum.IN_SITU
    adresse: Optional[str] = Field(None, max_length=255)
    code_postal: Optional[str] = Field(None, max_length=20)
    ville: Optional[str] = Field(None, max_length=120)
    telephone: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = Field(None, max_length=120)
    contact_id: Optional[int] = None

class LieuUpdate(BaseModel):
    nom: Optional[str] = Field(None, max_length=255)
    type: Optional[TypeLieuEnum] = None
    adresse: Optional[str] = Field(None, max_length=255)
    code_postal: Optional[str] = Field(None, max_length=20)
    ville: Optional[str] = Field(None, max_length=120)
    telephone: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = Field(None, max_length=120)
    contact_id: Optional[int] = None

class LieuLight(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    adresse: Optional[str] = None
    code_postal: Optional[str] = None
    ville: Optional[str] = None
    telephone: Optional[str] = None
    email: Optional[str] = None

class LieuResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    type: TypeLieuEnum
    adresse: Optional[str] = None
    code_postal: Optional[str] = None
    ville: Optional[str] = None
    telephone: Optional[str] = None
    email: Optional[str] = None
    contact_id: Optional[int] = None
    is_active: bool
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# Participant Schemas
class ParticipantCreate(BaseModel):
    nom: str = Field(..., max_length=100)
    prenom: str = Field(..., max_length=100)
    email: str = Field(..., max_length=120)
    telephone: Optional[str] = Field(None, max_length=30)
    fonction: Optional[str] = Field(None, max_length=120)
    is_responsable: bool = False
    type_institution: Optional[str] = Field(None, max_length=120)
    nom_institution: Optional[str] = Field(None, max_length=255)
    rue: Optional[str] = Field(None, max_length=255)
    code_postal: Optional[str] = Field(None, max_length=20)
    ville: Optional[str] = Field(None, max_length=120)
    telephone_institution: Optional[str] = Field(None, max_length=30)
    adresse_facturation: Optional[str] = None
    commentaire: Optional[str] = None

class ParticipantUpdate(BaseModel):
    nom: Optional[str] = Field(None, max_length=100)
    prenom: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=120)
    telephone: Optional[str] = Field(None, max_length=30)
    fonction: Optional[str] = Field(None, max_length=120)
    is_responsable: Optional[bool] = None
    type_institution: Optional[str] = Field(None, max_length=120)
    nom_institution: Optional[str] = Field(None, max_length=255)
    rue: Optional[str] = Field(None, max_length=255)
    code_postal: Optional[str] = Field(None, max_length=20)
    ville: Optional[str] = Field(None, max_length=120)
    telephone_institution: Optional[str] = Field(None, max_length=30)
    adresse_facturation: Optional[str] = None
    commentaire: Optional[str] = None

class ParticipantLight(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    prenom: str
    email: str
    telephone: Optional[str] = None

class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom: str
    prenom: str
    email: str
    telephone: Optional[str] = None
    fonction: Optional[str] = None
    is_responsable: bool
    type_institution: Optional[str] = None
    nom_institution: Optional[str] = None
    rue: Optional[str] = None
    code_postal: Optional[str] = None
    ville: Optional[str] = None
    telephone_institution: Optional[str] = None
    adresse_facturation: Optional[str] = None
    commentaire: Optional[str] = None
    is_active: bool
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# Formation Schemas
class _PrixExclusifs(BaseModel):
    @model_validator(mode="after")
    def check_prix_exclusifs(self):
        if getattr(self, "prix_unitaire", None) is not None and getattr(self, "prix_total", None) is not None:
            raise ValueError("Le prix unitaire et le prix total ne peuvent pas être renseignés ensemble.")
        return self

class FormationCreate(_PrixExclusifs):
    titre: str = Field(..., max_length=255)
    lieu_id: Optional[int] = None
    categorie: Optional[str] = Field(None, max_length=120)
    date: DateType
    nombre_heures: int = Field(0, ge=0)
    nombre_places: Optional[int] = Field(None, ge=0)
    url_visio: Optional[str] = Field(None, max_length=512)
    telephone: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = Field(None, max_length=120)
    prix_unitaire: Optional[float] = Field(None, ge=0)
    prix_total: Optional[float] = Field(None, ge=0)
    prix_htva: bool = True
    type: str = Field("standard", max_length=50)
    formateur_ids: List[int] = Field(default_factory=list)

    @field_validator("formateur_ids")
    def dedoublonner_formateurs(cls, v):
        return _dedoublonner(v)

class FormationUpdate(_PrixExclusifs):
    titre: Optional[str] = Field(None, max_length=255)
    lieu_id: Optional[int] = None
    categorie: Optional[str] = Field(None, max_length=120)
    date: Optional[DateType] = None
    nombre_heures: Optional[int] = Field(None, ge=0)
    nombre_places: Optional[int] = Field(None, ge=0)
    url_visio: Optional[str] = Field(None, max_length=512)
    telephone: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = Field(None, max_length=120)
    prix_unitaire: Optional[float] = Field(None, ge=0)
    prix_total: Optional[float] = Field(None, ge=0)
    prix_htva: Optional[bool] = None
    type: Optional[str] = Field(None, max_length=50)
    formateur_ids: Optional[List[int]] = None

    @field_validator("formateur_ids")
    def dedoublonner_formateurs(cls, v):
        return _dedoublonner(v)

class FormationPrixUpdate(BaseModel):
    champ: Literal["prix_unitaire", "prix_total"]
    valeur: Optional[float] = Field(None, ge=0)

class FormationRatingUpdate(BaseModel):
    rating: int = Field(..., ge=0, le=100)

class FormationDuplication(BaseModel):
    date: DateType

class FormationLight(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    titre: str
    categorie: Optional[str] = None
    date: DateType

class FormationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    titre: str
    lieu_id: Optional[int] = None
    categorie: Optional[str] = None
    date: DateType
    nombre_heures: int
    nombre_places: Optional[int] = None
    url_visio: Optional[str] = None
    telephone: Optional[str] = None
    email: Optional[str] = None
    prix_unitaire: Optional[float] = None
    prix_total: Optional[float] = None
    prix_htva: bool
    rating: int
    type: str
    is_active: bool
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    lieu: Optional[LieuLight] = None
    formateurs: List[FormateurLight] = Field(default_factory=list)
    participant_count: int = 0


# Inscriptions (formation ↔ participant)
class InscriptionCreate(BaseModel):
    participant_id: int
    statut: StatutInscriptionEnum = StatutInscriptionEnum.PENDING

class InscriptionStatutUpdate(BaseModel):
    statut: StatutInscriptionEnum

class ParticipantsSelection(BaseModel):
    participant_ids: List[int] = Field(default_factory=list)

    @field_validator("participant_ids")
    def dedoublonner_participants(cls, v):
        return _dedoublonner(v)

class InscriptionResponse(BaseModel):
    formation_id: int
    participant_id: int
    statut: StatutInscriptionEnum
    participant: ParticipantResponse


# Paramètre Schemas
class ParametreCreate(BaseModel):
    type: TypeParametreEnum = TypeParametreEnum.TYPE_INSTITUTION
    code: Optional[str] = Field(None, max_length=100)
    libelle: str = Field(..., min_length=1, max_length=255)
    ordre: int = 0

class ParametreUpdate(BaseModel):
    type: Optional[TypeParametreEnum] = None
    code: Optional[str] = Field(None, max_length=100)
    libelle: Optional[str] = Field(None, min_length=1, max_length=255)
    ordre: Optional[int] = None

class ParametreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TypeParametreEnum
    code: str
    libelle: str
    ordre: int
    is_active: bool
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# Email Schemas
class EmailLight(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_email: str
    to_email: str
    subject: Optional[str] = None
    created_at: datetime
    response: Optional[str] = None

class EmailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_email: str
    to_email: str
    subject: Optional[str] = None
    body: Optional[str] = None
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    response: Optional[str] = None
    response_at: Optional[datetime] = None
    response_by: Optional[int] = None
    is_active: bool
    created_at: datetime

class EmailReponseUpdate(BaseModel):
    response: str = Field(..., min_length=1)


# Réponses IA
class ReponseIA(BaseModel):
    source: Literal["texte", "output", "liste", "inconnu"]
    texte: str

class AssistantRequest(BaseModel):
    message: str = Field(..., min_length=1)

class AssistantResponse(BaseModel):
    message: str
    reponse: str
    timestamp: datetime


# Factures (FactureDemi)
class FactureCreate(BaseModel):
    nom_client: str = Field(..., max_length=255)
    articles: Optional[str] = None
    prix: float = Field(0, ge=0)
    nfacture: str = Field(..., max_length=50)
    quantite: int = Field(1, ge=0)

class FactureUpdate(BaseModel):
    nom_client: Optional[str] = Field(None, max_length=255)
    articles: Optional[str] = None
    prix: Optional[float] = Field(None, ge=0)
    nfacture: Optional[str] = Field(None, max_length=50)
    quantite: Optional[int] = Field(None, ge=0)

class FactureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nom_client: str
    articles: Optional[str] = None
    prix: float
    nfacture: str
    quantite: int
    created_at: datetime


# Cartographie
class Coordonnees(BaseModel):
    lat: float
    lon: float

class Itineraire(BaseModel):
    distance_km: int
    trace: List[Coordonnees] = Field(default_factory=list)

class CarteFormateur(BaseModel):
    formateur: FormateurLight
    coordonnees: Optional[Coordonnees] = None
    itineraire: Optional[Itineraire] = None

class CarteFormation(BaseModel):
    formation_id: int
    carte_disponible: bool
    coordonnees: Optional[Coordonnees] = None
    formateurs: List[CarteFormateur] = Field(default_factory=list)


# Recherche
class ResultatRecherche(BaseModel):
    type: Literal["formation", "formateur", "lieu", "participant"]
    id: int
    title: str
    subtitle: Optional[str] = None
    date: Optional[DateType] = None
    path: str


LoginResponse.model_rebuild()
