from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from astba.api.accessor import SqlAlchemyAccessor
from astba.api.schema import (
    EtudiantCreate, EtudiantResponse, EtudiantDetail,
    FormationCreate, FormationResponse, FormationResume,
    SeanceResponse, SeanceStatutUpdate,
    InscriptionCreate, InscriptionResponse,
    PresenceBulkRequest, PresenceResponse, LigneFeuillePresence,
    ProgressionResponse,
    CertificatRequest, CertificatResponse, CertificatDetail, CertificatEligible,
    TableauDeBordStats
)
from astba.api.service import (
    EtudiantService, FormationService, InscriptionService, SeanceService,
    ProgressionService, PresenceService, RegistreCertificatService, TableauDeBordService
)
from astba.util.db.database import get_async_db


# ============================
# Router Etudiants
# ============================
etudiants = APIRouter(
    prefix="/etudiants",
    tags=["etudiants"],
)

@etudiants.post(
    "",
    response_model=EtudiantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un étudiant",
    description="Enregistre un nouvel étudiant, avec éventuellement les coordonnées de son responsable légal."
)
async def create_etudiant(
    etudiant_data: EtudiantCreate,
    db: AsyncSession = Depends(get_async_db)
):
    service = EtudiantService(db)
    return await service.create(etudiant_data)

@etudiants.get(
    "/{etudiant_id}",
    response_model=EtudiantDetail,
    status_code=status.HTTP_200_OK,
    summary="Récupérer la fiche d'un étudiant",
    description="Récupère un étudiant avec la progression de chacune de ses inscriptions et l'historique de ses présences (séance, formation, niveau, date)."
)
async def get_etudiant(
    etudiant_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = EtudiantService(db)
    return await service.get_detail(etudiant_id)

@etudiants.get(
    "",
    response_model=List[EtudiantResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les étudiants",
    description="Récupère une liste paginée des étudiants."
)
async def get_all_etudiants(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_async_db)
):
    service = EtudiantService(db)
    return await service.get_all(skip, limit)

# ============================
# Router Formations
# ============================
formations = APIRouter(
    prefix="/formations",
    tags=["formations"],
)

@formations.post(
    "",
    response_model=FormationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer une formation",
    description="Crée une formation et génère ses niveaux et séances (par défaut 4 niveaux de 6 séances)."
)
async def create_formation(
    formation_data: FormationCreate,
    db: AsyncSession = Depends(get_async_db)
):
    service = FormationService(db)
    return await service.create(formation_data)

@formations.get(
    "/{formation_id}",
    response_model=FormationResponse,
    status_code=status.HTTP_200_OK,
    summary="Récupérer une formation par ID",
    description="Récupère une formation avec ses niveaux ordonnés et les séances de chaque niveau."
)
async def get_formation(
    formation_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = FormationService(db)
    return await service.get_by_id(formation_id)

@formations.get(
    "",
    response_model=List[FormationResume],
    status_code=status.HTTP_200_OK,
    summary="Lister les formations",
    description="Récupère une liste paginée des formations avec leur nombre d'inscrits et de niveaux."
)
async def get_all_formations(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_async_db)
):
    service = FormationService(db)
    return await service.get_all(skip, limit)

# ============================
# Router Inscriptions
# ============================
inscriptions = APIRouter(
    prefix="/inscriptions",
    tags=["inscriptions"],
)

@inscriptions.post(
    "",
    response_model=InscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Inscrire un étudiant à une formation",
    description="Inscrit un étudiant au niveau 1 d'une formation. Une seconde inscription au même couple est refusée (409)."
)
async def create_inscription(
    inscription_data: InscriptionCreate,
    db: AsyncSession = Depends(get_async_db)
):
    service = InscriptionService(db)
    return await service.create(inscription_data)

@inscriptions.get(
    "/formation/{formation_id}",
    response_model=List[InscriptionResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les inscriptions d'une formation",
    description="Récupère toutes les inscriptions d'une formation, avec le niveau actuel de chaque étudiant."
)
async def get_inscriptions_formation(
    formation_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = InscriptionService(db)
    return await service.get_by_formation(formation_id)

@inscriptions.get(
    "/etudiant/{etudiant_id}",
    response_model=List[InscriptionResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les inscriptions d'un étudiant",
    description="Récupère toutes les formations auxquelles un étudiant est inscrit."
)
async def get_inscriptions_etudiant(
    etudiant_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = InscriptionService(db)
    return await service.get_by_etudiant(etudiant_id)

# ============================
# Router Seances
# ============================
seances = APIRouter(
    prefix="/seances",
    tags=["seances"],
)

@seances.get(
    "/{seance_id}",
    response_model=SeanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Récupérer une séance par ID",
    description="Récupère les informations d'une séance."
)
async def get_seance(
    seance_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = SeanceService(db)
    return await service.get_by_id(seance_id)

@seances.patch(
    "/{seance_id}/statut",
    response_model=SeanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Changer le statut d'une séance",
    description="Met à jour le cycle de vie d'une séance (pending, en_cours, fini). Sans effet sur la progression des étudiants."
)
async def change_statut_seance(
    seance_id: int,
    statut_data: SeanceStatutUpdate,
    db: AsyncSession = Depends(get_async_db)
):
    service = SeanceService(db)
    return await service.change_statut(seance_id, statut_data)

# ============================
# Router Presences
# ============================
presences = APIRouter(
    prefix="/presences",
    tags=["presences"],
)

@presences.get(
    "/seance/{seance_id}",
    response_model=List[LigneFeuillePresence],
    status_code=status.HTTP_200_OK,
    summary="Feuille de présence d'une séance",
    description="Liste les étudiants inscrits à la formation de la séance avec leur état : present, absent ou pending (non marqué)."
)
async def get_feuille_presence(
    seance_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = SeanceService(db)
    return await service.feuille_presence(seance_id)

@presences.post(
    "/bulk",
    response_model=List[PresenceResponse],
    status_code=status.HTTP_200_OK,
    summary="Enregistrer une feuille de présence",
    description="Enregistre (ou remplace) les présences soumises, puis recalcule la progression de chaque couple étudiant / formation touché : niveau actuel, statut de l'inscription et émission du certificat si la formation est terminée."
)
async def bulk_presences(
    presence_data: PresenceBulkRequest,
    db: AsyncSession = Depends(get_async_db)
):
    service = PresenceService(SqlAlchemyAccessor(db))
    return await service.commit_attendance(presence_data.records)

# ============================
# Router Progression
# ============================
progression = APIRouter(
    prefix="/progression",
    tags=["progression"],
)

@progression.get(
    "/formation/{formation_id}/etudiant/{etudiant_id}",
    response_model=ProgressionResponse,
    status_code=status.HTTP_200_OK,
    summary="Progression d'un étudiant",
    description="Calcule la progression d'un étudiant inscrit : séances suivies, absences, niveaux validés, éligibilité et retard."
)
async def get_progression(
    formation_id: int,
    etudiant_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = ProgressionService(SqlAlchemyAccessor(db))
    return await service.get_progression(formation_id, etudiant_id)

# ──────────────────────────────────────────────────────────────
# Router Certificats
# ──────────────────────────────────────────────────────────────
certificats = APIRouter(
    prefix="/certificats",
    tags=["certificats"],
)

@certificats.get(
    "",
    response_model=List[CertificatDetail],
    status_code=status.HTTP_200_OK,
    summary="Lister les certificats",
    description="Récupère une liste paginée des certificats émis, avec le nom de l'étudiant et de la formation."
)
async def get_all_certificats(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_async_db)
):
    service = RegistreCertificatService(db)
    return await service.get_all(skip, limit)

@certificats.get(
    "/eligibles",
    response_model=List[CertificatEligible],
    status_code=status.HTTP_200_OK,
    summary="Lister les étudiants éligibles",
    description="Liste les étudiants ayant validé tous les niveaux de leur formation, en indiquant s'ils sont déjà certifiés."
)
async def get_certificats_eligibles(
    db: AsyncSession = Depends(get_async_db)
):
    service = RegistreCertificatService(db)
    return await service.get_eligibles()

@certificats.get(
    "/etudiant/{etudiant_id}",
    response_model=List[CertificatResponse],
    status_code=status.HTTP_200_OK,
    summary="Lister les certificats d'un étudiant",
    description="Récupère tous les certificats obtenus par un étudiant."
)
async def get_certificats_etudiant(
    etudiant_id: int,
    db: AsyncSession = Depends(get_async_db)
):
    service = RegistreCertificatService(db)
    return await service.get_by_etudiant(etudiant_id)

@certificats.post(
    "",
    response_model=CertificatResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Générer un certificat",
    description="Émet le certificat d'un étudiant ayant validé tous les niveaux. 400 si non éligible, 409 si déjà émis."
)
async def generer_certificat(
    certificat_data: CertificatRequest,
    db: AsyncSession = Depends(get_async_db)
):
    """Générer un certificat"""
    service = RegistreCertificatService(db)
    return await service.generer(certificat_data.etudiant_id, certificat_data.formation_id)

# ============================
# Router Tableau de bord
# ============================
tableau_de_bord = APIRouter(
    prefix="/dashboard",
    tags=["dashboard"],
)

@tableau_de_bord.get(
    "/stats",
    response_model=TableauDeBordStats,
    status_code=status.HTTP_200_OK,
    summary="Statistiques du tableau de bord",
    description="Totaux (étudiants, formations actives, certificats, présences du jour) et, par formation, inscrits, étudiants ayant terminé et progression moyenne."
)
async def get_stats_tableau_de_bord(
    db: AsyncSession = Depends(get_async_db)
):
    service = TableauDeBordService(db)
    return await service.get_stats()
