import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError

from astba.api.accessor import EntityAccessor, SqlAlchemyAccessor
from astba.api.model import (
    Certificat, Etudiant, Formation, Inscription, Niveau, Presence, Seance
)
from astba.api.progression import (
    compute_next_level, construire_snapshot_niveau, etat_presence, evaluate_progress, selectionner_presence
)
from astba.api.schema import (
    AvancementResponse, CertificatCreate, CertificatDetail, CertificatEligible, CertificatResponse, EmissionCertificat,
    EtudiantCreate, EtudiantDetail, EtudiantResponse, FormationCreate, FormationLight, FormationResponse, FormationResume,
    HistoriquePresence, Identifiant, InscriptionCreate, InscriptionProgression, InscriptionResponse, LigneFeuillePresence,
    NiveauDetail, NiveauSnapshot, PresenceCreate, PresenceResponse, PresenceSaisie, ProgressionFormationStats,
    ProgressionResponse, SeanceResponse, SeanceStatutUpdate, TableauDeBordStats
)
from astba.util.helper.enum import (
    StatutFormationEnum, StatutInscriptionEnum, StatutProgressionEnum
)
from astba.util.db.setting import settings

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# Exceptions métier
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class EntiteIntrouvableException(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class NonEligibleException(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class CertificatDejaEmisException(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class PresenceCommitException(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class BaseService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self):
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.error(f"Erreur d'intégrité lors du commit : {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Violation d'intégrité : Entrée dupliquée ou contrainte échouée."
            )
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Erreur inattendue lors du commit : {str(e)}")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Erreur inattendue de base de données lors du commit.")

    async def refresh(self, instance):
        await self.session.refresh(instance)

    async def _get_or_404(self, model, object_id: int, libelle: str):
        instance = await self.session.get(model, object_id)
        if not instance:
            logger.warning(f"{libelle} ID {object_id} non trouvé(e)")
            raise EntiteIntrouvableException(detail=f"{libelle} avec ID {object_id} non trouvé(e).")
        return instance


def nom_complet(etudiant: Optional[Etudiant]) -> str:
    return f"{etudiant.prenom} {etudiant.nom}" if etudiant else "Inconnu"

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# ETUDIANTS
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class EtudiantService(BaseService):
    async def create(self, data: EtudiantCreate) -> EtudiantResponse:
        logger.info("Création d'un étudiant")
        etudiant = Etudiant(**data.model_dump())
        self.session.add(etudiant)
        await self.commit()
        await self.refresh(etudiant)
        logger.info(f"Étudiant créé avec ID {etudiant.id}")
        return EtudiantResponse.model_validate(etudiant, from_attributes=True)

    async def get_detail(self, etudiant_id: int) -> EtudiantDetail:
        """Fiche de l'étudiant : progression de chaque inscription et historique des présences."""
        etudiant = await self._get_or_404(Etudiant, etudiant_id, "Étudiant")
        progression_service = ProgressionService(SqlAlchemyAccessor(self.session))

        result = await self.session.execute(
            select(Inscription, Formation)
            .join(Formation, Formation.id == Inscription.formation_id)
            .where(Inscription.etudiant_id == etudiant_id)
            .order_by(Inscription.id)
        )
        inscriptions = []
        for inscription, formation in result.all():
            progression = await progression_service.evaluer(formation.id, etudiant_id)
            inscriptions.append(InscriptionProgression(
                inscription=InscriptionResponse.model_validate(inscription, from_attributes=True),
                formation=FormationLight.model_validate(formation, from_attributes=True),
                total_seances=progression.total_seances,
                seances_suivies=progression.seances_suivies,
                niveaux_valides=progression.niveaux_valides,
                total_niveaux=progression.total_niveaux,
                eligible=progression.eligible,
                statut_formation=progression.statut_formation
            ))

        historique = await self.session.execute(
            select(Presence, Seance, Niveau, Formation)
            .join(Seance, Seance.id == Presence.seance_id)
            .join(Niveau, Niveau.id == Seance.niveau_id)
            .join(Formation, Formation.id == Niveau.formation_id)
            .where(Presence.etudiant_id == etudiant_id)
            .order_by(Presence.marque_le.desc(), Presence.id.desc())
        )

        return EtudiantDetail(
            **EtudiantResponse.model_validate(etudiant, from_attributes=True).model_dump(),
            inscriptions=inscriptions,
            historique_presences=[
                HistoriquePresence(
                    seance_id=seance.id,
                    titre_seance=seance.titre,
                    nom_formation=formation.nom,
                    nom_niveau=niveau.nom,
                    marque_le=presence.marque_le,
                    present=presence.present
                )
                for presence, seance, niveau, formation in historique.all()
            ]
        )

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[EtudiantResponse]:
        result = await self.session.execute(select(Etudiant).order_by(Etudiant.id).offset(skip).limit(limit))
        return [EtudiantResponse.model_validate(e, from_attributes=True) for e in result.scalars().all()]

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# FORMATIONS (niveaux et séances générés à la création, jamais modifiés ensuite)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class FormationService(BaseService):
    async def create(self, data: FormationCreate) -> FormationResponse:
        nombre_niveaux = data.nombre_niveaux or settings.NIVEAUX_PAR_FORMATION
        seances_par_niveau = data.seances_par_niveau or settings.SEANCES_PAR_NIVEAU
        logger.info(f"Création de la formation '{data.nom}' ({nombre_niveaux} niveaux x {seances_par_niveau} séances)")

        formation = Formation(
            nom=data.nom,
            description=data.description,
            date_debut=data.date_debut,
            statut=data.statut
        )
        self.session.add(formation)
        await self.session.flush()

        for numero in range(1, nombre_niveaux + 1):
            niveau = Niveau(formation_id=formation.id, numero_niveau=numero, nom=f"Niveau {numero}")
            self.session.add(niveau)
            await self.session.flush()
            for numero_seance in range(1, seances_par_niveau + 1):
                self.session.add(Seance(
                    niveau_id=niveau.id,
                    numero_seance=numero_seance,
                    titre=f"Séance {numero_seance}"
                ))

        await self.commit()
        logger.info(f"Formation créée avec ID {formation.id}")
        return await self.get_by_id(formation.id)

    async def get_by_id(self, formation_id: int) -> FormationResponse:
        formation = await self._get_or_404(Formation, formation_id, "Formation")

        niveaux_result = await self.session.execute(
            select(Niveau).where(Niveau.formation_id == formation_id).order_by(Niveau.numero_niveau)
        )
        niveaux = niveaux_result.scalars().all()

        seances_result = await self.session.execute(
            select(Seance)
            .where(Seance.niveau_id.in_([n.id for n in niveaux]))
            .order_by(Seance.niveau_id, Seance.numero_seance)
        )
        seances_par_niveau: Dict[int, List[SeanceResponse]] = defaultdict(list)
        for seance in seances_result.scalars().all():
            seances_par_niveau[seance.niveau_id].append(SeanceResponse.model_validate(seance, from_attributes=True))

        # Créer manuellement la réponse pour éviter les erreurs de greenlet avec les relations
        return FormationResponse(
            id=formation.id,
            nom=formation.nom,
            description=formation.description,
            date_debut=formation.date_debut,
            statut=formation.statut,
            niveaux=[
                NiveauDetail(
                    id=n.id,
                    formation_id=n.formation_id,
                    numero_niveau=n.numero_niveau,
                    nom=n.nom,
                    seances=seances_par_niveau[n.id]
                )
                for n in niveaux
            ]
        )

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[FormationResume]:
        inscrits = (
            select(Inscription.formation_id, func.count(Inscription.id).label("nombre"))
            .group_by(Inscription.formation_id)
            .subquery()
        )
        niveaux = (
            select(Niveau.formation_id, func.count(Niveau.id).label("nombre"))
            .group_by(Niveau.formation_id)
            .subquery()
        )
        result = await self.session.execute(
            select(Formation, func.coalesce(inscrits.c.nombre, 0), func.coalesce(niveaux.c.nombre, 0))
            .outerjoin(inscrits, inscrits.c.formation_id == Formation.id)
            .outerjoin(niveaux, niveaux.c.formation_id == Formation.id)
            .order_by(Formation.id)
            .offset(skip)
            .limit(limit)
        )
        return [
            FormationResume(
                **FormationLight.model_validate(formation, from_attributes=True).model_dump(),
                nombre_inscrits=nombre_inscrits,
                nombre_niveaux=nombre_niveaux
            )
            for formation, nombre_inscrits, nombre_niveaux in result.all()
        ]

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# INSCRIPTIONS
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class InscriptionService(BaseService):
    async def create(self, data: InscriptionCreate) -> InscriptionResponse:
        await self._get_or_404(Etudiant, data.etudiant_id, "Étudiant")
        await self._get_or_404(Formation, data.formation_id, "Formation")

        existing = await self.session.execute(
            select(Inscription).where(
                Inscription.etudiant_id == data.etudiant_id,
                Inscription.formation_id == data.formation_id
            )
        )
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="L'étudiant est déjà inscrit à cette formation."
            )

        inscription = Inscription(
            etudiant_id=data.etudiant_id,
            formation_id=data.formation_id,
            niveau_actuel=1,
            statut=StatutInscriptionEnum.ACTIVE,
            date_inscription=date.today()
        )
        self.session.add(inscription)
        await self.commit()
        await self.refresh(inscription)
        logger.info(f"Inscription de l'étudiant {data.etudiant_id} à la formation {data.formation_id} (ID {inscription.id})")
        return InscriptionResponse.model_validate(inscription, from_attributes=True)

    async def get_by_formation(self, formation_id: int) -> List[InscriptionResponse]:
        result = await self.session.execute(
            select(Inscription).where(Inscription.formation_id == formation_id).order_by(Inscription.id)
        )
        return [InscriptionResponse.model_validate(i, from_attributes=True) for i in result.scalars().all()]

    async def get_by_etudiant(self, etudiant_id: int) -> List[InscriptionResponse]:
        result = await self.session.execute(
            select(Inscription).where(Inscription.etudiant_id == etudiant_id).order_by(Inscription.id)
        )
        return [InscriptionResponse.model_validate(i, from_attributes=True) for i in result.scalars().all()]

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# SEANCES (statut de cycle de vie uniquement ; la progression dépend des présences)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class SeanceService(BaseService):
    async def get_by_id(self, seance_id: int) -> SeanceResponse:
        seance = await self._get_or_404(Seance, seance_id, "Séance")
        return SeanceResponse.model_validate(seance, from_attributes=True)

    async def change_statut(self, seance_id: int, data: SeanceStatutUpdate) -> SeanceResponse:
        seance = await self._get_or_404(Seance, seance_id, "Séance")

        seance.statut = data.statut
        await self.commit()
        await self.refresh(seance)
        logger.info(f"Séance ID {seance_id} passée au statut {data.statut.value}")
        return SeanceResponse.model_validate(seance, from_attributes=True)

    async def feuille_presence(self, seance_id: int) -> List[LigneFeuillePresence]:
        """Étudiants inscrits à la formation de la séance, avec leur état de présence."""
        seance = await self._get_or_404(Seance, seance_id, "Séance")
        niveau = await self._get_or_404(Niveau, seance.niveau_id, "Niveau")

        inscriptions = await self.session.execute(
            select(Inscription, Etudiant)
            .join(Etudiant, Etudiant.id == Inscription.etudiant_id)
            .where(Inscription.formation_id == niveau.formation_id)
            .order_by(Etudiant.nom, Etudiant.prenom)
        )
        presences_result = await self.session.execute(select(Presence).where(Presence.seance_id == seance_id))
        presences = {p.etudiant_id: p for p in presences_result.scalars().all()}

        feuille = []
        for inscription, etudiant in inscriptions.all():
            presence = presences.get(inscription.etudiant_id)
            feuille.append(LigneFeuillePresence(
                etudiant_id=inscription.etudiant_id,
                nom_complet=nom_complet(etudiant),
                etat=etat_presence(PresenceResponse.model_validate(presence, from_attributes=True) if presence else None),
                note=presence.note if presence else None,
                commentaire=presence.commentaire if presence else None
            ))
        return feuille

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# PROGRESSION (chargement du snapshot puis calcul pur)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class ProgressionService:
    def __init__(self, accessor: EntityAccessor):
        self.accessor = accessor

    async def charger_snapshot(self, formation_id: Identifiant, etudiant_id: Identifiant) -> List[NiveauSnapshot]:
        snapshot = []
        for niveau in await self.accessor.get_levels_by_training(formation_id):
            seances = await self.accessor.get_sessions_by_level(niveau.id)
            presences = {}
            for seance in seances:
                enregistrements = await self.accessor.get_attendance_by_session(seance.id)
                presences[seance.id] = selectionner_presence(enregistrements, etudiant_id)
            snapshot.append(construire_snapshot_niveau(niveau.id, niveau.numero_niveau, niveau.nom, seances, presences))
        return snapshot

    async def evaluer(self, formation_id: Identifiant, etudiant_id: Identifiant) -> ProgressionResponse:
        snapshot = await self.charger_snapshot(formation_id, etudiant_id)
        return evaluate_progress(etudiant_id, formation_id, snapshot)

    async def calculer_avancement(self, formation_id: Identifiant, etudiant_id: Identifiant) -> AvancementResponse:
        snapshot = await self.charger_snapshot(formation_id, etudiant_id)
        return compute_next_level(snapshot)

    async def get_progression(self, formation_id: Identifiant, etudiant_id: Identifiant) -> ProgressionResponse:
        """Progression d'un étudiant inscrit ; 404 si l'inscription n'existe pas."""
        if not await self.accessor.get_enrollment(etudiant_id, formation_id):
            raise EntiteIntrouvableException(
                detail=f"Aucune inscription de l'étudiant {etudiant_id} à la formation {formation_id}."
            )
        return await self.evaluer(formation_id, etudiant_id)

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# Verrou par couple (étudiant, formation)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

# Sérialise le recalcul et l'émission dans ce processus ; entre workers, seule la contrainte
# uq_certificat_etudiant_formation fait foi. Une entrée vit tant qu'un appel la tient ou l'attend.
_verrous_paires: Dict[Tuple[Identifiant, Identifiant], asyncio.Lock] = {}
_utilisateurs_paires: Dict[Tuple[Identifiant, Identifiant], int] = defaultdict(int)


@asynccontextmanager
async def verrou_paire(etudiant_id: Identifiant, formation_id: Identifiant):
    cle = (etudiant_id, formation_id)
    verrou = _verrous_paires.setdefault(cle, asyncio.Lock())
    _utilisateurs_paires[cle] += 1
    try:
        async with verrou:
            yield
    finally:
        _utilisateurs_paires[cle] -= 1
        if _utilisateurs_paires[cle] == 0:
            del _utilisateurs_paires[cle]
            del _verrous_paires[cle]


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# CERTIFICATS
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
def _suffixe(identifiant: Identifiant) -> str:
    return str(identifiant)[-3:].rjust(3, "0")

def generer_numero_certificat(date_emission: date, etudiant_id: Identifiant, formation_id: Identifiant,
                              prefixe: Optional[str] = None) -> str:
    """Numéro canonique : ASTBA-AAAA-MMJJ-EEEFFF (suffixes des identifiants sur 3 caractères)."""
    prefixe = prefixe or settings.PREFIXE_CERTIFICAT
    return (
        f"{prefixe}-{date_emission.year}-{date_emission.month:02d}{date_emission.day:02d}"
        f"-{_suffixe(etudiant_id)}{_suffixe(formation_id)}"
    )


class CertificatService:
    """Émet au plus un certificat par couple (étudiant, formation)."""

    def __init__(self, accessor: EntityAccessor):
        self.accessor = accessor

    async def issue(self, etudiant_id: Identifiant, formation_id: Identifiant, progression: ProgressionResponse,
                    aujourd_hui: Optional[date] = None) -> EmissionCertificat:
        if progression.statut_formation != StatutProgressionEnum.TERMINEE:
            logger.warning(
                f"Émission refusée : étudiant {etudiant_id} / formation {formation_id} "
                f"au statut {progression.statut_formation.value}"
            )
            raise NonEligibleException(
                detail="L'étudiant n'a pas validé tous les niveaux et n'est pas éligible à la certification."
            )

        existant = await self.accessor.get_certificate(etudiant_id, formation_id)
        if existant:
            logger.info(f"Certificat {existant.numero_certificat} déjà émis pour l'étudiant {etudiant_id} / formation {formation_id}")
            return EmissionCertificat(certificat=existant, deja_emis=True)

        date_emission = aujourd_hui or date.today()
        certificat, cree = await self.accessor.create_certificate_if_absent(CertificatCreate(
            etudiant_id=etudiant_id,
            formation_id=formation_id,
            numero_certificat=generer_numero_certificat(date_emission, etudiant_id, formation_id),
            date_obtention=date_emission
        ))
        if not cree:
            # Un autre appel a inséré le certificat entre la lecture et l'insertion
            logger.info(f"Certificat {certificat.numero_certificat} émis entre-temps pour l'étudiant {etudiant_id} / formation {formation_id}")
            return EmissionCertificat(certificat=certificat, deja_emis=True)

        logger.info(f"Certificat {certificat.numero_certificat} émis pour l'étudiant {etudiant_id} / formation {formation_id}")
        return EmissionCertificat(certificat=certificat, deja_emis=False)


class RegistreCertificatService(BaseService):
    """Consultation des certificats et émission explicite (hors saisie de présences)."""

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[CertificatDetail]:
        result = await self.session.execute(
            select(Certificat, Etudiant, Formation)
            .outerjoin(Etudiant, Etudiant.id == Certificat.etudiant_id)
            .outerjoin(Formation, Formation.id == Certificat.formation_id)
            .order_by(Certificat.id)
            .offset(skip)
            .limit(limit)
        )
        return [
            CertificatDetail(
                **CertificatResponse.model_validate(certificat, from_attributes=True).model_dump(),
                nom_etudiant=nom_complet(etudiant),
                nom_formation=formation.nom if formation else "Inconnue"
            )
            for certificat, etudiant, formation in result.all()
        ]

    async def get_by_etudiant(self, etudiant_id: int) -> List[CertificatResponse]:
        result = await self.session.execute(
            select(Certificat).where(Certificat.etudiant_id == etudiant_id).order_by(Certificat.date_obtention)
        )
        return [CertificatResponse.model_validate(c, from_attributes=True) for c in result.scalars().all()]

    async def get_eligibles(self) -> List[CertificatEligible]:
        accessor = SqlAlchemyAccessor(self.session)
        progression_service = ProgressionService(accessor)

        result = await self.session.execute(
            select(Inscription, Etudiant, Formation)
            .join(Etudiant, Etudiant.id == Inscription.etudiant_id)
            .join(Formation, Formation.id == Inscription.formation_id)
            .order_by(Formation.id, Inscription.id)
        )

        eligibles = []
        for inscription, etudiant, formation in result.all():
            progression = await progression_service.evaluer(formation.id, etudiant.id)
            if not progression.eligible:
                continue
            certificat = await accessor.get_certificate(etudiant.id, formation.id)
            eligibles.append(CertificatEligible(
                etudiant_id=etudiant.id,
                nom_complet=nom_complet(etudiant),
                formation_id=formation.id,
                nom_formation=formation.nom,
                niveaux_valides=progression.niveaux_valides,
                total_niveaux=progression.total_niveaux,
                deja_certifie=certificat is not None,
                numero_certificat=certificat.numero_certificat if certificat else None
            ))
        return eligibles

    async def generer(self, etudiant_id: int, formation_id: int) -> CertificatResponse:
        await self._get_or_404(Etudiant, etudiant_id, "Étudiant")
        await self._get_or_404(Formation, formation_id, "Formation")

        accessor = SqlAlchemyAccessor(self.session)
        async with verrou_paire(etudiant_id, formation_id):
            progression = await ProgressionService(accessor).evaluer(formation_id, etudiant_id)
            emission = await CertificatService(accessor).issue(etudiant_id, formation_id, progression)
        if emission.deja_emis:
            raise CertificatDejaEmisException(
                detail=f"Certificat déjà émis : {emission.certificat.numero_certificat}"
            )

        await self.commit()
        return emission.certificat

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# PRESENCES : enregistrement d'une feuille puis recalcul des progressions touchées
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────

class PresenceService:
    def __init__(self, accessor: EntityAccessor, aujourd_hui: Optional[date] = None):
        self.accessor = accessor
        self.aujourd_hui = aujourd_hui

    async def commit_attendance(self, records: List[PresenceSaisie]) -> List[PresenceResponse]:
        """
        Enregistre un passage de saisie de présences.

        1. upsert de chaque présence (aucun recalcul si une écriture échoue)
        2. déduction des couples (étudiant, formation) touchés
        3. pour chaque couple : progression, certificat si terminée, niveau actuel de l'inscription
        """
        if not records:
            logger.info("Aucune présence à enregistrer")
            return []

        # Une séance inconnue est une erreur de saisie : rien n'est écrit
        seances: Dict[Identifiant, SeanceResponse] = {}
        for record in records:
            if record.seance_id not in seances:
                seance = await self.accessor.get_session(record.seance_id)
                if not seance:
                    logger.warning(f"Séance ID {record.seance_id} non trouvée")
                    raise EntiteIntrouvableException(detail=f"Séance avec ID {record.seance_id} non trouvée.")
                seances[record.seance_id] = seance

        marque_le = datetime.now(timezone.utc)
        appliquees = []
        try:
            for record in records:
                appliquees.append(await self.accessor.upsert_attendance(
                    PresenceCreate(**record.model_dump(), marque_le=marque_le)
                ))
        except Exception as e:
            await self.accessor.rollback()
            logger.error(f"Échec de l'enregistrement des présences : {str(e)}", exc_info=True)
            raise PresenceCommitException(
                detail="Erreur lors de l'enregistrement des présences : aucune progression recalculée."
            ) from e
        logger.info(f"{len(appliquees)} présence(s) enregistrée(s)")

        for etudiant_id, formation_id in await self._paires_touchees(records, seances):
            await self.recalculer(etudiant_id, formation_id)

        return appliquees

    async def recalculer(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[InscriptionResponse]:
        async with verrou_paire(etudiant_id, formation_id):
            if not await self.accessor.get_enrollment(etudiant_id, formation_id):
                logger.warning(f"Aucune inscription pour l'étudiant {etudiant_id} / formation {formation_id} : recalcul ignoré")
                return None

            snapshot = await ProgressionService(self.accessor).charger_snapshot(formation_id, etudiant_id)
            progression = evaluate_progress(etudiant_id, formation_id, snapshot)
            if progression.statut_formation == StatutProgressionEnum.TERMINEE:
                await CertificatService(self.accessor).issue(
                    etudiant_id, formation_id, progression, aujourd_hui=self.aujourd_hui
                )

            avancement = compute_next_level(snapshot)
            inscription = await self.accessor.update_enrollment(etudiant_id, formation_id, {
                "niveau_actuel": avancement.niveau_suivant,
                "statut": StatutInscriptionEnum.TERMINEE if avancement.termine else StatutInscriptionEnum.ACTIVE,
            })
            logger.info(
                f"Étudiant {etudiant_id} / formation {formation_id} : niveau {avancement.niveau_suivant}, "
                f"formation {progression.statut_formation.value}"
            )
            return inscription

    async def _paires_touchees(self, records: List[PresenceSaisie],
                               seances: Dict[Identifiant, SeanceResponse]) -> List[Tuple[Identifiant, Identifiant]]:
        formations_par_niveau: Dict[Identifiant, Optional[Identifiant]] = {}
        paires: Dict[Tuple[Identifiant, Identifiant], None] = {}

        for record in records:
            niveau_id = seances[record.seance_id].niveau_id
            if niveau_id not in formations_par_niveau:
                niveau = await self.accessor.get_level(niveau_id)
                if not niveau:
                    logger.warning(f"Niveau ID {niveau_id} non trouvé : séance {record.seance_id} ignorée pour le recalcul")
                formations_par_niveau[niveau_id] = niveau.formation_id if niveau else None

            formation_id = formations_par_niveau[niveau_id]
            if formation_id is not None:
                paires.setdefault((record.etudiant_id, formation_id), None)

        return list(paires)

# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# TABLEAU DE BORD
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class TableauDeBordService(BaseService):
    async def _compter(self, statement) -> int:
        result = await self.session.execute(statement)
        return result.scalar_one()

    async def get_stats(self) -> TableauDeBordStats:
        debut_du_jour = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

        total_etudiants = await self._compter(select(func.count(Etudiant.id)))
        formations_actives = await self._compter(
            select(func.count(Formation.id)).where(Formation.statut == StatutFormationEnum.ACTIVE)
        )
        certificats_emis = await self._compter(select(func.count(Certificat.id)))
        presences_du_jour = await self._compter(
            select(func.count(Presence.id)).where(Presence.present.is_(True), Presence.marque_le >= debut_du_jour)
        )

        return TableauDeBordStats(
            total_etudiants=total_etudiants,
            formations_actives=formations_actives,
            certificats_emis=certificats_emis,
            presences_du_jour=presences_du_jour,
            progression_formations=await self._progression_formations()
        )

    async def _progression_formations(self) -> List[ProgressionFormationStats]:
        progression_service = ProgressionService(SqlAlchemyAccessor(self.session))
        formations = (await self.session.execute(select(Formation).order_by(Formation.id))).scalars().all()

        statistiques = []
        for formation in formations:
            inscriptions = await self.session.execute(
                select(Inscription.etudiant_id).where(Inscription.formation_id == formation.id)
            )
            etudiants = inscriptions.scalars().all()

            seances_possibles = seances_suivies = termines = 0
            for etudiant_id in etudiants:
                progression = await progression_service.evaluer(formation.id, etudiant_id)
                seances_possibles += progression.total_seances
                seances_suivies += progression.seances_suivies
                if progression.statut_formation == StatutProgressionEnum.TERMINEE:
                    termines += 1

            statistiques.append(ProgressionFormationStats(
                formation_id=formation.id,
                nom_formation=formation.nom,
                nombre_inscrits=len(etudiants),
                nombre_termines=termines,
                progression_moyenne=round(seances_suivies * 100 / seances_possibles) if seances_possibles else 0
            ))
        return statistiques
