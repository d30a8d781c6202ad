"""schema_initial_progression

Revision ID: 3f2a9c1d7e54
Revises:
Create Date: 2026-10-18 09:12:41.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7e54'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'etudiants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prenom', sa.String(length=100), nullable=False),
        sa.Column('nom', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('telephone', sa.String(length=30), nullable=True),
        sa.Column('date_naissance', sa.Date(), nullable=True),
        sa.Column('nom_responsable', sa.String(length=200), nullable=True),
        sa.Column('telephone_responsable', sa.String(length=30), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_etudiants_prenom', 'etudiants', ['prenom'])
    op.create_index('ix_etudiants_nom', 'etudiants', ['nom'])
    op.create_index('ix_etudiants_email', 'etudiants', ['email'])

    op.create_table(
        'formations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('nom', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('date_debut', sa.Date(), nullable=True),
        sa.Column('statut', sa.Enum('ACTIVE', 'ARCHIVEE', name='statutformationenum'), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_formations_nom', 'formations', ['nom'])

    op.create_table(
        'niveaux',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('formation_id', sa.Integer(), nullable=False),
        sa.Column('numero_niveau', sa.Integer(), nullable=False),
        sa.Column('nom', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['formation_id'], ['formations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('formation_id', 'numero_niveau', name='uq_niveau_formation_numero'),
    )
    op.create_index('ix_niveau_formation', 'niveaux', ['formation_id'])

    op.create_table(
        'seances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('niveau_id', sa.Integer(), nullable=False),
        sa.Column('numero_seance', sa.Integer(), nullable=False),
        sa.Column('titre', sa.String(length=255), nullable=False),
        sa.Column('date_seance', sa.Date(), nullable=True),
        sa.Column('statut', sa.Enum('EN_ATTENTE', 'EN_COURS', 'FINI', name='statutseanceenum'), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['niveau_id'], ['niveaux.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('niveau_id', 'numero_seance', name='uq_seance_niveau_numero'),
    )
    op.create_index('ix_seance_niveau', 'seances', ['niveau_id'])

    op.create_table(
        'inscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('etudiant_id', sa.Integer(), nullable=False),
        sa.Column('formation_id', sa.Integer(), nullable=False),
        sa.Column('niveau_actuel', sa.Integer(), nullable=False),
        sa.Column('statut', sa.Enum('ACTIVE', 'TERMINEE', 'ABANDONNEE', name='statutinscriptionenum'), nullable=False),
        sa.Column('date_inscription', sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['etudiant_id'], ['etudiants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['formation_id'], ['formations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('etudiant_id', 'formation_id', name='uq_inscription_etudiant_formation'),
    )
    op.create_index('ix_inscription_formation', 'inscriptions', ['formation_id'])
    op.create_index('ix_inscription_statut', 'inscriptions', ['statut'])

    op.create_table(
        'presences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('etudiant_id', sa.Integer(), nullable=False),
        sa.Column('seance_id', sa.Integer(), nullable=False),
        sa.Column('present', sa.Boolean(), nullable=False),
        sa.Column('note', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('commentaire', sa.Text(), nullable=True),
        sa.Column('marque_le', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['etudiant_id'], ['etudiants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['seance_id'], ['seances.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('etudiant_id', 'seance_id', name='uq_presence_etudiant_seance'),
    )
    op.create_index('ix_presence_seance', 'presences', ['seance_id'])
    op.create_index('ix_presence_etudiant', 'presences', ['etudiant_id'])

    op.create_table(
        'certificats',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('etudiant_id', sa.Integer(), nullable=False),
        sa.Column('formation_id', sa.Integer(), nullable=False),
        sa.Column('numero_certificat', sa.String(length=100), nullable=False),
        sa.Column('date_obtention', sa.Date(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['etudiant_id'], ['etudiants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['formation_id'], ['formations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('etudiant_id', 'formation_id', name='uq_certificat_etudiant_formation'),
    )
    op.create_index('ix_certificats_numero_certificat', 'certificats', ['numero_certificat'])
    op.create_index('ix_certificat_etudiant', 'certificats', ['etudiant_id'])
    op.create_index('ix_certificat_date', 'certificats', ['date_obtention'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('certificats')
    op.drop_table('presences')
    op.drop_table('inscriptions')
    op.drop_table('seances')
    op.drop_table('niveaux')
    op.drop_table('formations')
    op.drop_table('etudiants')
    # Les types enum PostgreSQL survivent à la suppression des tables
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum_name in ('statutinscriptionenum', 'statutseanceenum', 'statutformationenum'):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
