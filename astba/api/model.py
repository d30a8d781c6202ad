from __future__ import annotations

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Text,
    Enum, ForeignKey, UniqueConstraint, Index,
    Numeric, Boolean
)
from sqlalchemy.orm import relationship

from astba.util.helper.enum import (
    StatutFormationEnum, StatutInscriptionEnum, StatutSeanceEnum, TimestampMixin
)
from astba.util.db.database import Base


# ──────────────────────────────────────────────────────────────
# ETUDIANT
# ──────────────────────────────────────────────────────────────
class Etudiant(Base, TimestampMixin):
    __tablename__ = "etudiants"

    id = Column(Integer, primary_key=True)
    prenom = Column(String(100), nullable=False, index=True)
    nom = Column(String(100), nullable=False, index=True)
    email = Column(String(120), nullable=True, index=True)
    telephone = Column(String(30), nullable=True)
    date_naissance = Column(Date, nullable=True)

    # Responsable légal (élèves mineurs)
    nom_responsable = Column(String(200), nullable=True)
    telephone_responsable = Column(String(30), nullable=True)

    inscriptions = relationship("Inscription", back_populates="etudiant", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Etudiant {self.id} {self.nom} {self.prenom}>"


# ──────────────────────────────────────────────────────────────
# FORMATION / NIVEAU / SEANCE (niveaux et séances créés avec la formation)
# ──────────────────────────────────────────────────────────────
class Formation(Base, TimestampMixin):
    __tablename__ = "formations"

    id = Column(Integer, primary_key=True)
    nom = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    date_debut = Column(Date, nullable=True)
    statut = Column(Enum(StatutFormationEnum), default=StatutFormationEnum.ACTIVE, nullable=False)

    niveaux = relationship("Niveau", back_populates="formation", cascade="all, delete-orphan")
    inscriptions = relationship("Inscription", back_populates="formation", cascade="all, delete-orphan")


class Niveau(Base, TimestampMixin):
    __tablename__ = "niveaux"

    id = Column(Integer, primary_key=True)
    formation_id = Column(Integer, ForeignKey("formations.id", ondelete="CASCADE"), nullable=False)
    numero_niveau = Column(Integer, nullable=False)
    nom = Column(String(255), nullable=False)

    formation = relationship("Formation", back_populates="niveaux")
    seances = relationship("Seance", back_populates="niveau", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("formation_id", "numero_niveau", name="uq_niveau_formation_numero"),
        Index("ix_niveau_formation", "formation_id"),
    )


class Seance(Base, TimestampMixin):
    __tablename__ = "seances"

    id = Column(Integer, primary_key=True)
    niveau_id = Column(Integer, ForeignKey("niveaux.id", ondelete="CASCADE"), nullable=False)
    numero_seance = Column(Integer, nullable=False)
    titre = Column(String(255), nullable=False)
    date_seance = Column(Date, nullable=True)
    statut = Column(Enum(StatutSeanceEnum), default=StatutSeanceEnum.EN_ATTENTE, nullable=False)  # Cycle de vie, indépendant des présences

    niveau = relationship("Niveau", back_populates="seances")
    presences = relationship("Presence", back_populates="seance", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("niveau_id", "numero_seance", name="uq_seance_niveau_numero"),
        Index("ix_seance_niveau", "niveau_id"),
    )


# ──────────────────────────────────────────────────────────────
# INSCRIPTION (seule entité qui stocke une valeur calculée : niveau_actuel)
# ──────────────────────────────────────────────────────────────
class Inscription(Base, TimestampMixin):
    __tablename__ = "inscriptions"

    id = Column(Integer, primary_key=True)
    etudiant_id = Column(Integer, ForeignKey("etudiants.id", ondelete="CASCADE"), nullable=False)
    formation_id = Column(Integer, ForeignKey("formations.id", ondelete="CASCADE"), nullable=False)

    niveau_actuel = Column(Integer, default=1, nullable=False)
    statut = Column(Enum(StatutInscriptionEnum), default=StatutInscriptionEnum.ACTIVE, nullable=False)
    date_inscription = Column(Date, nullable=True)

    etudiant = relationship("Etudiant", back_populates="inscriptions")
    formation = relationship("Formation", back_populates="inscriptions")

    __table_args__ = (
        UniqueConstraint("etudiant_id", "formation_id", name="uq_inscription_etudiant_formation"),
        Index("ix_inscription_formation", "formation_id"),
        Index("ix_inscription_statut", "statut"),
    )


# ──────────────────────────────────────────────────────────────
# PRESENCES (au plus une par couple étudiant / séance)
# ──────────────────────────────────────────────────────────────
class Presence(Base, TimestampMixin):
    __tablename__ = "presences"

    id = Column(Integer, primary_key=True)
    etudiant_id = Column(Integer, ForeignKey("etudiants.id", ondelete="CASCADE"), nullable=False)
    seance_id = Column(Integer, ForeignKey("seances.id", ondelete="CASCADE"), nullable=False)

    present = Column(Boolean, default=False, nullable=False)
    note = Column(Numeric(5, 2), nullable=True)
    commentaire = Column(Text, nullable=True)
    marque_le = Column(DateTime(timezone=True), nullable=True)

    seance = relationship("Seance", back_populates="presences")

    __table_args__ = (
        UniqueConstraint("etudiant_id", "seance_id", name="uq_presence_etudiant_seance"),
        Index("ix_presence_seance", "seance_id"),
        Index("ix_presence_etudiant", "etudiant_id"),
    )


# ──────────────────────────────────────────────────────────────
# CERTIFICATS (au plus un par couple étudiant / formation, jamais modifié)
# ──────────────────────────────────────────────────────────────
class Certificat(Base, TimestampMixin):
    __tablename__ = "certificats"

    id = Column(Integer, primary_key=True)
    etudiant_id = Column(Integer, ForeignKey("etudiants.id", ondelete="CASCADE"), nullable=False)
    formation_id = Column(Integer, ForeignKey("formations.id", ondelete="CASCADE"), nullable=False)

    numero_certificat = Column(String(100), index=True, nullable=False)  # Non unique : les suffixes sont tronqués à 3 caractères
    date_obtention = Column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("etudiant_id", "formation_id", name="uq_certificat_etudiant_formation"),
        Index("ix_certificat_etudiant", "etudiant_id"),
        Index("ix_certificat_date", "date_obtention"),
    )
