"""schema_initial_temis

Revision ID: 5a1f0c3e9b27
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5a1f0c3e9b27'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _horodatage():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def _suivi():
    return _horodatage() + [
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('utilisateurs.id', ondelete='SET NULL'), nullable=True),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('utilisateurs.id', ondelete='SET NULL'), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'utilisateurs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(120), nullable=False),
        sa.Column('nom', sa.String(100), nullable=False),
        sa.Column('prenom', sa.String(100), nullable=False),
        sa.Column('password', sa.String(255), nullable=False),
        sa.Column('actif', sa.Boolean(), nullable=False),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        *_horodatage(),
    )
    op.create_index('ix_utilisateurs_email', 'utilisateurs', ['email'], unique=True)

    op.create_table(
        'formateurs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(100), nullable=False),
        sa.Column('prenom', sa.String(100), nullable=False),
        sa.Column('email', sa.String(120), nullable=False),
        sa.Column('telephone', sa.String(30), nullable=True),
        sa.Column('adresse', sa.String(255), nullable=True),
        sa.Column('code_postal', sa.String(20), nullable=True),
        sa.Column('ville', sa.String(120), nullable=True),
        *_suivi(),
    )
    op.create_index('ix_formateurs_nom', 'formateurs', ['nom'])
    op.create_index('ix_formateurs_is_active', 'formateurs', ['is_active'])

    op.create_table(
        'participants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(100), nullable=False),
        sa.Column('prenom', sa.String(100), nullable=False),
        sa.Column('email', sa.String(120), nullable=False),
        sa.Column('telephone', sa.String(30), nullable=True),
        sa.Column('fonction', sa.String(120), nullable=True),
        sa.Column('is_responsable', sa.Boolean(), nullable=False),
        sa.Column('type_institution', sa.String(120), nullable=True),
        sa.Column('nom_institution', sa.String(255), nullable=True),
        sa.Column('rue', sa.String(255), nullable=True),
        sa.Column('code_postal', sa.String(20), nullable=True),
        sa.Column('ville', sa.String(120), nullable=True),
        sa.Column('telephone_institution', sa.String(30), nullable=True),
        sa.Column('adresse_facturation', sa.Text(), nullable=True),
        sa.Column('commentaire', sa.Text(), nullable=True),
        *_suivi(),
    )
    op.create_index('ix_participants_nom', 'participants', ['nom'])
    op.create_index('ix_participants_is_active', 'participants', ['is_active'])
    op.create_index('ix_participants_created_by', 'participants', ['created_by'])

    op.create_table(
        'lieux',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom', sa.String(255), nullable=False),
        sa.Column('type', sa.Enum('IN_SITU', 'FORMATION_OUVERTE', name='typelieuenum'), nullable=False),
        sa.Column('adresse', sa.String(255), nullable=True),
        sa.Column('code_postal', sa.String(20), nullable=True),
        sa.Column('ville', sa.String(120), nullable=True),
        sa.Column('telephone', sa.String(30), nullable=True),
        sa.Column('email', sa.String(120), nullable=True),
        sa.Column('contact_id', sa.Integer(), sa.ForeignKey('participants.id', ondelete='SET NULL'), nullable=True),
        *_suivi(),
    )
    op.create_index('ix_lieux_nom', 'lieux', ['nom'])
    op.create_index('ix_lieux_is_active', 'lieux', ['is_active'])

    op.create_table(
        'formations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('titre', sa.String(255), nullable=False),
        sa.Column('lieu_id', sa.Integer(), sa.ForeignKey('lieux.id', ondelete='SET NULL'), nullable=True),
        sa.Column('categorie', sa.String(120), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('nombre_heures', sa.Integer(), nullable=False),
        sa.Column('nombre_places', sa.Integer(), nullable=True),
        sa.Column('url_visio', sa.String(512), nullable=True),
        sa.Column('telephone', sa.String(30), nullable=True),
        sa.Column('email', sa.String(120), nullable=True),
        sa.Column('prix_unitaire', sa.Numeric(10, 2), nullable=True),
        sa.Column('prix_total', sa.Numeric(10, 2), nullable=True),
        sa.Column('prix_htva', sa.Boolean(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        *_suivi(),
    )
    op.create_index('ix_formations_titre', 'formations', ['titre'])
    op.create_index('ix_formations_date', 'formations', ['date'])
    op.create_index('ix_formations_categorie', 'formations', ['categorie'])
    op.create_index('ix_formations_lieu_id', 'formations', ['lieu_id'])
    op.create_index('ix_formations_is_active', 'formations', ['is_active'])

    op.create_table(
        'formation_formateurs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('formation_id', sa.Integer(), sa.ForeignKey('formations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('formateur_id', sa.Integer(), sa.ForeignKey('formateurs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('utilisateurs.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('formation_id', 'formateur_id', name='uq_formation_formateur'),
    )
    op.create_index('ix_formation_formateur_formation', 'formation_formateurs', ['formation_id'])

    op.create_table(
        'formation_participants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('formation_id', sa.Integer(), sa.ForeignKey('formations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('participant_id', sa.Integer(), sa.ForeignKey('participants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('statut', sa.Enum('PENDING', 'CONFIRMED', 'PAID', name='statutinscriptionenum'), nullable=False),
        *_suivi(),
        sa.UniqueConstraint('formation_id', 'participant_id', name='uq_formation_participant'),
    )
    op.create_index('ix_formation_participant_formation', 'formation_participants', ['formation_id'])

    op.create_table(
        'parametres',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'type',
            sa.Enum('TYPE_INSTITUTION', 'TYPE_FORMATION', 'NIVEAU_FORMATION', 'STATUT_FORMATION', name='typeparametreenum'),
            nullable=False,
        ),
        sa.Column('code', sa.String(100), nullable=False),
        sa.Column('libelle', sa.String(255), nullable=False),
        sa.Column('ordre', sa.Integer(), nullable=False),
        *_suivi(),
    )
    # Unicité (type, code) limitée aux paramètres actifs
    op.create_index(
        'uq_parametre_type_code_actif', 'parametres', ['type', 'code'],
        unique=True, postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'emails',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('from_email', sa.String(255), nullable=False),
        sa.Column('to_email', sa.String(255), nullable=False),
        sa.Column('subject', sa.String(500), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('response_by', sa.Integer(), sa.ForeignKey('utilisateurs.id', ondelete='SET NULL'), nullable=True),
        *_suivi(),
    )
    op.create_index('ix_emails_is_active', 'emails', ['is_active'])

    op.create_table(
        'FactureDemi',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('nom_client', sa.String(255), nullable=False),
        sa.Column('articles', sa.Text(), nullable=True),
        sa.Column('prix', sa.Numeric(10, 2), nullable=False),
        sa.Column('nfacture', sa.String(50), nullable=False),
        sa.Column('quantite', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_FactureDemi_nfacture', 'FactureDemi', ['nfacture'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('FactureDemi')
    op.drop_table('emails')
    op.drop_index('uq_parametre_type_code_actif', table_name='parametres')
    op.drop_table('parametres')
    op.drop_table('formation_participants')
    op.drop_table('formation_formateurs')
    op.drop_table('formations')
    op.drop_table('lieux')
    op.drop_table('participants')
    op.drop_table('formateurs')
    op.drop_table('utilisateurs')
    sa.Enum(name='typeparametreenum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='statutinscriptionenum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='typelieuenum').drop(op.get_bind(), checkfirst=True)
