from __future__ import annotations
from datetime import date, datetime
from typing import List, Optional, Union
from pydantic import BaseModel, Field

from astba.util.helper.enum import (
    EtatPresenceEnum, StatutFormationEnum, StatutInscriptionEnum, StatutNiveauEnum,
    StatutProgressionEnum, StatutSeanceEnum
)

# Identifiants opaques : entiers en base relationnelle, chaînes ailleurs
Identifiant = Union[int, str]

# Etudiant Schemas
class EtudiantCreate(BaseModel):
    prenom: str = Field(..., max_length=100)
    nom: str = Field(..., max_length=100)
    email: Optional[str] = Field(None, max_length=120)
    telephone: Optional[str] = Field(None, max_length=30)
    date_naissance: Optional[date] = None
    nom_responsable: Optional[str] = Field(None, max_length=200)
    telephone_responsable: Optional[str] = Field(None, max_length=30)

class EtudiantResponse(BaseModel):
    id: Identifiant
    prenom: str
    nom: str
    email: Optional[str] = None
    telephone: Optional[str] = None
    date_naissance: Optional[date] = None
    nom_responsable: Optional[str] = None
    telephone_responsable: Optional[str] = None

    class Config:
        from_attributes = True

# Formation / Niveau / Seance Schemas
class FormationCreate(BaseModel):
    nom: str = Field(..., max_length=255)
    description: Optional[str] = None
    date_debut: Optional[date] = None
    statut: StatutFormationEnum = StatutFormationEnum.ACTIVE
    nombre_niveaux: Optional[int] = Field(None, ge=1, le=20, description="Par défaut : NIVEAUX_PAR_FORMATION")
    seances_par_niveau: Optional[int] = Field(None, ge=1, le=50, description="Par défaut : SEANCES_PAR_NIVEAU")

class FormationLight(BaseModel):
    id: Identifiant
    nom: str
    description: Optional[str] = None
    date_debut: Optional[date] = None
    statut: StatutFormationEnum

    class Config:
        from_attributes = True

class SeanceResponse(BaseModel):
    id: Identifiant
    niveau_id: Identifiant
    numero_seance: int
    titre: str
    date_seance: Optional[date] = None
    statut: StatutSeanceEnum = StatutSeanceEnum.EN_ATTENTE

    class Config:
        from_attributes = True

class SeanceStatutUpdate(BaseModel):
    statut: StatutSeanceEnum

class NiveauResponse(BaseModel):
    id: Identifiant
    formation_id: Identifiant
    numero_niveau: int
    nom: str

    class Config:
        from_attributes = True

class NiveauDetail(NiveauResponse):
    seances: List[SeanceResponse] = []

class FormationResume(FormationLight):
    nombre_inscrits: int = 0
    nombre_niveaux: int = 0

class FormationResponse(FormationLight):
    niveaux: List[NiveauDetail] = []

# Inscription Schemas
class InscriptionCreate(BaseModel):
    etudiant_id: int
    formation_id: int

class InscriptionResponse(BaseModel):
    id: Identifiant
    etudiant_id: Identifiant
    formation_id: Identifiant
    niveau_actuel: int = Field(1, ge=1)
    statut: StatutInscriptionEnum = StatutInscriptionEnum.ACTIVE
    date_inscription: Optional[date] = None

    class Config:
        from_attributes = True

# Presence Schemas
class PresenceSaisie(BaseModel):
    """Une ligne de la feuille de présence soumise par le formateur."""
    etudiant_id: int
    seance_id: int
    present: bool
    note: Optional[float] = Field(None, ge=0, le=100)
    commentaire: Optional[str] = None

class PresenceBulkRequest(BaseModel):
    records: List[PresenceSaisie] = Field(..., description="Lignes de présence d'un passage de saisie")

class PresenceCreate(PresenceSaisie):
    marque_le: datetime

class PresenceResponse(BaseModel):
    id: Identifiant
    etudiant_id: Identifiant
    seance_id: Identifiant
    present: bool
    note: Optional[float] = None
    commentaire: Optional[str] = None
    marque_le: Optional[datetime] = None

    class Config:
        from_attributes = True

class LigneFeuillePresence(BaseModel):
    etudiant_id: Identifiant
    nom_complet: str
    etat: EtatPresenceEnum
    note: Optional[float] = None
    commentaire: Optional[str] = None

# Certificat Schemas
class CertificatCreate(BaseModel):
    etudiant_id: Identifiant
    formation_id: Identifiant
    numero_certificat: str = Field(..., max_length=100)
    date_obtention: date

class CertificatRequest(BaseModel):
    etudiant_id: int
    formation_id: int

class CertificatResponse(BaseModel):
    id: Identifiant
    etudiant_id: Identifiant
    formation_id: Identifiant
    numero_certificat: str
    date_obtention: date

    class Config:
        from_attributes = True

class CertificatDetail(CertificatResponse):
    nom_etudiant: str
    nom_formation: str

class EmissionCertificat(BaseModel):
    certificat: CertificatResponse
    deja_emis: bool = Field(..., description="Vrai si le certificat existait déjà (aucune création)")

class CertificatEligible(BaseModel):
    etudiant_id: Identifiant
    nom_complet: str
    formation_id: Identifiant
    nom_formation: str
    niveaux_valides: int
    total_niveaux: int
    deja_certifie: bool
    numero_certificat: Optional[str] = None

# Schémas de progression (snapshot d'entrée et résultats)
class SeanceSnapshot(BaseModel):
    seance_id: Identifiant
    numero_seance: int
    etat: EtatPresenceEnum = EtatPresenceEnum.EN_ATTENTE

class NiveauSnapshot(BaseModel):
    niveau_id: Identifiant
    numero_niveau: int
    nom: str = ""
    seances: List[SeanceSnapshot] = []

class NiveauProgression(BaseModel):
    niveau_id: Identifiant
    numero_niveau: int
    nom: str
    total_seances: int
    seances_marquees: int
    seances_presentes: int
    statut: StatutNiveauEnum

class ProgressionResponse(BaseModel):
    etudiant_id: Identifiant
    formation_id: Identifiant
    total_seances: int
    seances_suivies: int
    nombre_absences: int
    niveaux_valides: int
    total_niveaux: int
    eligible: bool
    statut_formation: StatutProgressionEnum
    en_retard: bool = Field(..., description="Vrai à partir du seuil d'absences, indépendamment du résultat")
    niveaux: List[NiveauProgression] = []

class AvancementResponse(BaseModel):
    niveau_suivant: int = Field(..., ge=1)
    termine: bool

# Fiche étudiant et tableau de bord
class InscriptionProgression(BaseModel):
    inscription: InscriptionResponse
    formation: FormationLight
    total_seances: int
    seances_suivies: int
    niveaux_valides: int
    total_niveaux: int
    eligible: bool
    statut_formation: StatutProgressionEnum

class HistoriquePresence(BaseModel):
    seance_id: Identifiant
    titre_seance: str
    nom_formation: str
    nom_niveau: str
    marque_le: Optional[datetime] = None
    present: bool

class EtudiantDetail(EtudiantResponse):
    inscriptions: List[InscriptionProgression] = []
    historique_presences: List[HistoriquePresence] = []

class ProgressionFormationStats(BaseModel):
    formation_id: Identifiant
    nom_formation: str
    nombre_inscrits: int
    nombre_termines: int
    progression_moyenne: int = Field(..., ge=0, le=100, description="Séances suivies / séances possibles, en %")

class TableauDeBordStats(BaseModel):
    total_etudiants: int
    formations_actives: int
    certificats_emis: int
    presences_du_jour: int
    progression_formations: List[ProgressionFormationStats] = []
