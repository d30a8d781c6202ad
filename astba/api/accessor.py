import logging
from abc import ABC, abstractmethod
from itertools import count
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from astba.api.model import Certificat, Inscription, Niveau, Presence, Seance
from astba.api.schema import (
    CertificatCreate, CertificatResponse, Identifiant, InscriptionResponse,
    NiveauResponse, PresenceCreate, PresenceResponse, SeanceResponse
)

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# Interface d'accès aux entités utilisée par le moteur de progression
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class EntityAccessor(ABC):
    """Lecture / écriture des entités dont dépend le moteur, quel que soit le stockage."""

    @abstractmethod
    async def get_levels_by_training(self, formation_id: Identifiant) -> List[NiveauResponse]: ...

    @abstractmethod
    async def get_level(self, niveau_id: Identifiant) -> Optional[NiveauResponse]: ...

    @abstractmethod
    async def get_sessions_by_level(self, niveau_id: Identifiant) -> List[SeanceResponse]: ...

    @abstractmethod
    async def get_session(self, seance_id: Identifiant) -> Optional[SeanceResponse]: ...

    @abstractmethod
    async def get_attendance_by_session(self, seance_id: Identifiant) -> List[PresenceResponse]: ...

    @abstractmethod
    async def upsert_attendance(self, data: PresenceCreate) -> PresenceResponse: ...

    @abstractmethod
    async def get_enrollment(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[InscriptionResponse]: ...

    @abstractmethod
    async def update_enrollment(self, etudiant_id: Identifiant, formation_id: Identifiant,
                                patch: Dict[str, Any]) -> Optional[InscriptionResponse]: ...

    @abstractmethod
    async def get_certificate(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[CertificatResponse]: ...

    @abstractmethod
    async def create_certificate(self, data: CertificatCreate) -> CertificatResponse: ...

    async def create_certificate_if_absent(self, data: CertificatCreate) -> Tuple[CertificatResponse, bool]:
        """Crée le certificat s'il n'existe pas ; le booléen vaut True seulement si la ligne a été créée ici."""
        existant = await self.get_certificate(data.etudiant_id, data.formation_id)
        if existant:
            return existant, False
        return await self.create_certificate(data), True

    async def rollback(self):
        """Annule les écritures en cours, si le stockage le permet."""
        return None


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# Accès SQLAlchemy (async)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class SqlAlchemyAccessor(EntityAccessor):
    """Les écritures sont flushées, pas commitées : le commit appartient à get_async_db."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_levels_by_training(self, formation_id: Identifiant) -> List[NiveauResponse]:
        result = await self.session.execute(
            select(Niveau).where(Niveau.formation_id == formation_id).order_by(Niveau.numero_niveau)
        )
        return [NiveauResponse.model_validate(n, from_attributes=True) for n in result.scalars().all()]

    async def get_level(self, niveau_id: Identifiant) -> Optional[NiveauResponse]:
        niveau = await self.session.get(Niveau, niveau_id)
        return NiveauResponse.model_validate(niveau, from_attributes=True) if niveau else None

    async def get_sessions_by_level(self, niveau_id: Identifiant) -> List[SeanceResponse]:
        result = await self.session.execute(
            select(Seance).where(Seance.niveau_id == niveau_id).order_by(Seance.numero_seance)
        )
        return [SeanceResponse.model_validate(s, from_attributes=True) for s in result.scalars().all()]

    async def get_session(self, seance_id: Identifiant) -> Optional[SeanceResponse]:
        seance = await self.session.get(Seance, seance_id)
        return SeanceResponse.model_validate(seance, from_attributes=True) if seance else None

    async def get_attendance_by_session(self, seance_id: Identifiant) -> List[PresenceResponse]:
        result = await self.session.execute(
            select(Presence)
            .where(Presence.seance_id == seance_id)
            .execution_options(populate_existing=True)
        )
        return [PresenceResponse.model_validate(p, from_attributes=True) for p in result.scalars().all()]

    async def upsert_attendance(self, data: PresenceCreate) -> PresenceResponse:
        result = await self.session.execute(
            select(Presence).where(
                Presence.etudiant_id == data.etudiant_id,
                Presence.seance_id == data.seance_id
            )
        )
        presence = result.scalar_one_or_none()

        if presence is None:
            presence = Presence(etudiant_id=data.etudiant_id, seance_id=data.seance_id)
            self.session.add(presence)

        presence.present = data.present
        presence.note = data.note
        presence.commentaire = data.commentaire
        presence.marque_le = data.marque_le

        await self.session.flush()
        await self.session.refresh(presence)
        return PresenceResponse.model_validate(presence, from_attributes=True)

    async def get_enrollment(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[InscriptionResponse]:
        inscription = await self._get_inscription(etudiant_id, formation_id)
        return InscriptionResponse.model_validate(inscription, from_attributes=True) if inscription else None

    async def update_enrollment(self, etudiant_id: Identifiant, formation_id: Identifiant,
                                patch: Dict[str, Any]) -> Optional[InscriptionResponse]:
        inscription = await self._get_inscription(etudiant_id, formation_id)
        if not inscription:
            return None

        for key, value in patch.items():
            setattr(inscription, key, value)
        await self.session.flush()
        await self.session.refresh(inscription)
        return InscriptionResponse.model_validate(inscription, from_attributes=True)

    async def get_certificate(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[CertificatResponse]:
        result = await self.session.execute(
            select(Certificat)
            .where(Certificat.etudiant_id == etudiant_id, Certificat.formation_id == formation_id)
            .execution_options(populate_existing=True)
        )
        certificat = result.scalar_one_or_none()
        return CertificatResponse.model_validate(certificat, from_attributes=True) if certificat else None

    async def create_certificate(self, data: CertificatCreate) -> CertificatResponse:
        certificat, _ = await self.create_certificate_if_absent(data)
        return certificat

    async def create_certificate_if_absent(self, data: CertificatCreate) -> Tuple[CertificatResponse, bool]:
        """Insert-or-ignore sur (etudiant_id, formation_id) : renvoie toujours le certificat en base."""
        values = data.model_dump()
        insert = self._insert_ignore()

        if insert is not None:
            statement = insert(Certificat).values(**values).on_conflict_do_nothing(
                index_elements=["etudiant_id", "formation_id"]
            )
            result = await self.session.execute(statement)
            cree = result.rowcount > 0
            if not cree:
                logger.warning(
                    f"Certificat déjà présent pour l'étudiant {data.etudiant_id} / formation {data.formation_id} : insertion ignorée"
                )
        else:
            existant = await self.get_certificate(data.etudiant_id, data.formation_id)
            if existant:
                return existant, False
            self.session.add(Certificat(**values))
            await self.session.flush()
            cree = True

        return await self.get_certificate(data.etudiant_id, data.formation_id), cree

    async def rollback(self):
        await self.session.rollback()

    def _insert_ignore(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        return None

    async def _get_inscription(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[Inscription]:
        result = await self.session.execute(
            select(Inscription).where(
                Inscription.etudiant_id == etudiant_id,
                Inscription.formation_id == formation_id
            )
        )
        return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
# Accès en mémoire (démonstration, tests du moteur sans base)
# ────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────────
class InMemoryAccessor(EntityAccessor):
    def __init__(self):
        self.niveaux: Dict[Identifiant, NiveauResponse] = {}
        self.seances: Dict[Identifiant, SeanceResponse] = {}
        self.inscriptions: Dict[Tuple[Identifiant, Identifiant], InscriptionResponse] = {}
        self.presences: Dict[Tuple[Identifiant, Identifiant], PresenceResponse] = {}
        self.certificats: Dict[Tuple[Identifiant, Identifiant], CertificatResponse] = {}
        self._ids = count(1)

    # --- Construction des données ---
    def add_training(self, formation_id: Identifiant, nombre_niveaux: int, seances_par_niveau: int) -> List[NiveauResponse]:
        """Crée les niveaux et séances d'une formation, numérotés à partir de 1."""
        niveaux = []
        for numero in range(1, nombre_niveaux + 1):
            niveau = NiveauResponse(id=next(self._ids), formation_id=formation_id,
                                    numero_niveau=numero, nom=f"Niveau {numero}")
            self.niveaux[niveau.id] = niveau
            for numero_seance in range(1, seances_par_niveau + 1):
                seance = SeanceResponse(id=next(self._ids), niveau_id=niveau.id,
                                        numero_seance=numero_seance, titre=f"Séance {numero_seance}")
                self.seances[seance.id] = seance
            niveaux.append(niveau)
        return niveaux

    def add_enrollment(self, etudiant_id: Identifiant, formation_id: Identifiant) -> InscriptionResponse:
        inscription = InscriptionResponse(id=next(self._ids), etudiant_id=etudiant_id, formation_id=formation_id)
        self.inscriptions[(etudiant_id, formation_id)] = inscription
        return inscription

    # --- Interface EntityAccessor ---
    async def get_levels_by_training(self, formation_id: Identifiant) -> List[NiveauResponse]:
        return [n for n in self.niveaux.values() if n.formation_id == formation_id]

    async def get_level(self, niveau_id: Identifiant) -> Optional[NiveauResponse]:
        return self.niveaux.get(niveau_id)

    async def get_sessions_by_level(self, niveau_id: Identifiant) -> List[SeanceResponse]:
        return [s for s in self.seances.values() if s.niveau_id == niveau_id]

    async def get_session(self, seance_id: Identifiant) -> Optional[SeanceResponse]:
        return self.seances.get(seance_id)

    async def get_attendance_by_session(self, seance_id: Identifiant) -> List[PresenceResponse]:
        return [p for p in self.presences.values() if p.seance_id == seance_id]

    async def upsert_attendance(self, data: PresenceCreate) -> PresenceResponse:
        key = (data.etudiant_id, data.seance_id)
        existante = self.presences.get(key)
        presence = PresenceResponse(
            id=existante.id if existante else next(self._ids),
            **data.model_dump()
        )
        self.presences[key] = presence
        return presence

    async def get_enrollment(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[InscriptionResponse]:
        return self.inscriptions.get((etudiant_id, formation_id))

    async def update_enrollment(self, etudiant_id: Identifiant, formation_id: Identifiant,
                                patch: Dict[str, Any]) -> Optional[InscriptionResponse]:
        inscription = self.inscriptions.get((etudiant_id, formation_id))
        if not inscription:
            return None
        inscription = inscription.model_copy(update=patch)
        self.inscriptions[(etudiant_id, formation_id)] = inscription
        return inscription

    async def get_certificate(self, etudiant_id: Identifiant, formation_id: Identifiant) -> Optional[CertificatResponse]:
        return self.certificats.get((etudiant_id, formation_id))

    async def create_certificate(self, data: CertificatCreate) -> CertificatResponse:
        certificat, _ = await self.create_certificate_if_absent(data)
        return certificat

    async def create_certificate_if_absent(self, data: CertificatCreate) -> Tuple[CertificatResponse, bool]:
        key = (data.etudiant_id, data.formation_id)
        if key in self.certificats:
            return self.certificats[key], False
        self.certificats[key] = CertificatResponse(id=next(self._ids), **data.model_dump())
        return self.certificats[key], True
