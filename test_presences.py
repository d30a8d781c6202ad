#!/usr/bin/env python3
"""
Test pytest de l'enregistrement des présences et du recalcul des progressions
Le stockage est en mémoire : aucune base n'est nécessaire
"""

import asyncio
from datetime import date, datetime, timezone

import pytest

from astba.api.accessor import InMemoryAccessor
from astba.api.schema import PresenceCreate, PresenceSaisie
from astba.api import service as service_module
from astba.api.service import (
    EntiteIntrouvableException, PresenceCommitException, PresenceService, ProgressionService
)
from astba.util.helper.enum import StatutInscriptionEnum

# Voir la fixture `accessor` de conftest.py
ETUDIANT_ID = 1
FORMATION_ID = 100
AUJOURD_HUI = date(2026, 1, 15)


def seances_par_niveau(accessor, formation_id=FORMATION_ID):
    """Séances regroupées par niveau, dans l'ordre des niveaux"""
    niveaux = sorted(
        (n for n in accessor.niveaux.values() if n.formation_id == formation_id),
        key=lambda n: n.numero_niveau
    )
    return [
        sorted((s for s in accessor.seances.values() if s.niveau_id == n.id), key=lambda s: s.numero_seance)
        for n in niveaux
    ]


def saisie(seances, present=True, etudiant_id=ETUDIANT_ID):
    return [PresenceSaisie(etudiant_id=etudiant_id, seance_id=s.id, present=present) for s in seances]


class AccessorDefaillant(InMemoryAccessor):
    """Echoue à partir de la n-ième écriture de présence"""

    def __init__(self, echec_a):
        super().__init__()
        self.echec_a = echec_a
        self.ecritures = 0
        self.annule = False

    async def upsert_attendance(self, data):
        self.ecritures += 1
        if self.ecritures >= self.echec_a:
            raise RuntimeError("écriture impossible")
        return await super().upsert_attendance(data)

    async def rollback(self):
        self.annule = True

# ──────────────────────────────────────────────────────────────
# Parcours complet
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_formation_complete_en_deux_saisies(accessor):
    """Test du scénario 2 niveaux x 2 séances, une saisie par niveau"""
    niveau_1, niveau_2 = seances_par_niveau(accessor)
    service = PresenceService(accessor, aujourd_hui=AUJOURD_HUI)

    await service.commit_attendance(saisie(niveau_1))
    appliquees = await service.commit_attendance(saisie(niveau_2))

    assert len(appliquees) == 2
    inscription = await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)
    assert inscription.niveau_actuel == 2
    assert inscription.statut == StatutInscriptionEnum.TERMINEE
    certificat = await accessor.get_certificate(ETUDIANT_ID, FORMATION_ID)
    assert certificat.numero_certificat == "ASTBA-2026-0115-001100"

    # Une nouvelle saisie identique ne crée pas de second certificat
    await PresenceService(accessor, aujourd_hui=date(2026, 3, 1)).commit_attendance(saisie(niveau_1 + niveau_2))
    assert len(accessor.certificats) == 1
    assert (await accessor.get_certificate(ETUDIANT_ID, FORMATION_ID)) == certificat

@pytest.mark.asyncio
async def test_avancement_apres_premier_niveau(accessor):
    niveau_1, _ = seances_par_niveau(accessor)

    await PresenceService(accessor).commit_attendance(saisie(niveau_1))

    inscription = await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)
    assert inscription.niveau_actuel == 2
    assert inscription.statut == StatutInscriptionEnum.ACTIVE
    assert accessor.certificats == {}

    avancement = await ProgressionService(accessor).calculer_avancement(FORMATION_ID, ETUDIANT_ID)
    assert avancement.niveau_suivant == inscription.niveau_actuel
    assert avancement.termine is False

@pytest.mark.asyncio
async def test_absence_bloque_l_avancement(accessor):
    niveau_1, niveau_2 = seances_par_niveau(accessor)
    service = PresenceService(accessor)

    await service.commit_attendance(saisie(niveau_1[:1]) + saisie(niveau_1[1:], present=False))
    await service.commit_attendance(saisie(niveau_2))

    inscription = await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)
    assert inscription.niveau_actuel == 1
    assert inscription.statut == StatutInscriptionEnum.ACTIVE
    assert accessor.certificats == {}

@pytest.mark.asyncio
async def test_correction_d_une_absence(accessor):
    """Test qu'une nouvelle saisie remplace la précédente pour la même séance"""
    niveau_1, niveau_2 = seances_par_niveau(accessor)
    service = PresenceService(accessor, aujourd_hui=AUJOURD_HUI)

    await service.commit_attendance(saisie(niveau_1 + niveau_2, present=False))
    await service.commit_attendance(saisie(niveau_1 + niveau_2))

    assert len(accessor.presences) == 4
    assert all(p.present for p in accessor.presences.values())
    assert (await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)).statut == StatutInscriptionEnum.TERMINEE

@pytest.mark.asyncio
async def test_horodatage_commun_a_la_saisie(accessor):
    niveau_1, _ = seances_par_niveau(accessor)

    appliquees = await PresenceService(accessor).commit_attendance(saisie(niveau_1))

    assert appliquees[0].marque_le is not None
    assert len({p.marque_le for p in appliquees}) == 1

@pytest.mark.asyncio
async def test_plusieurs_etudiants_dans_une_saisie(accessor):
    accessor.add_enrollment(2, FORMATION_ID)
    niveau_1, _ = seances_par_niveau(accessor)

    await PresenceService(accessor).commit_attendance(
        saisie(niveau_1) + saisie(niveau_1[:1], etudiant_id=2)
    )

    assert (await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)).niveau_actuel == 2
    assert (await accessor.get_enrollment(2, FORMATION_ID)).niveau_actuel == 1

# ──────────────────────────────────────────────────────────────
# Cas d'erreur
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_saisie_vide(accessor):
    assert await PresenceService(accessor).commit_attendance([]) == []

@pytest.mark.asyncio
async def test_seance_inconnue_rien_n_est_ecrit(accessor):
    niveau_1, _ = seances_par_niveau(accessor)
    records = saisie(niveau_1) + [PresenceSaisie(etudiant_id=ETUDIANT_ID, seance_id=9999, present=True)]

    with pytest.raises(EntiteIntrouvableException) as exc_info:
        await PresenceService(accessor).commit_attendance(records)

    assert exc_info.value.status_code == 404
    assert accessor.presences == {}, "Aucune présence ne doit être écrite"
    assert (await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)).niveau_actuel == 1

@pytest.mark.asyncio
async def test_echec_d_ecriture_sans_recalcul():
    """Test qu'une écriture en échec annule la saisie et ne recalcule rien"""
    accessor = AccessorDefaillant(echec_a=4)
    accessor.add_training(FORMATION_ID, nombre_niveaux=2, seances_par_niveau=2)
    accessor.add_enrollment(ETUDIANT_ID, FORMATION_ID)
    niveau_1, niveau_2 = seances_par_niveau(accessor)

    with pytest.raises(PresenceCommitException) as exc_info:
        await PresenceService(accessor).commit_attendance(saisie(niveau_1 + niveau_2))

    assert exc_info.value.status_code == 500
    assert accessor.annule is True
    inscription = await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)
    assert inscription.niveau_actuel == 1, "Le niveau ne doit pas être recalculé"
    assert accessor.certificats == {}

@pytest.mark.asyncio
async def test_etudiant_non_inscrit_ignore(accessor):
    """Test qu'une présence sans inscription est enregistrée sans recalcul ni certificat"""
    niveau_1, niveau_2 = seances_par_niveau(accessor)

    appliquees = await PresenceService(accessor).commit_attendance(saisie(niveau_1 + niveau_2, etudiant_id=42))

    assert len(appliquees) == 4
    assert await accessor.get_enrollment(42, FORMATION_ID) is None
    assert accessor.certificats == {}

@pytest.mark.asyncio
async def test_niveau_introuvable_ignore_la_paire(accessor):
    niveau_1, _ = seances_par_niveau(accessor)
    del accessor.niveaux[niveau_1[0].niveau_id]

    appliquees = await PresenceService(accessor).commit_attendance(saisie(niveau_1))

    assert len(appliquees) == 2
    assert (await accessor.get_enrollment(ETUDIANT_ID, FORMATION_ID)).niveau_actuel == 1

# ──────────────────────────────────────────────────────────────
# Verrou par couple
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_recalculs_simultanes_un_seul_certificat(accessor):
    """Test que deux recalculs simultanés du même couple n'émettent qu'un certificat"""
    niveau_1, niveau_2 = seances_par_niveau(accessor)
    for seance in niveau_1 + niveau_2:
        await accessor.upsert_attendance(PresenceCreate(
            etudiant_id=ETUDIANT_ID, seance_id=seance.id, present=True, marque_le=datetime.now(timezone.utc)
        ))

    service = PresenceService(accessor, aujourd_hui=AUJOURD_HUI)
    resultats = await asyncio.gather(
        service.recalculer(ETUDIANT_ID, FORMATION_ID),
        service.recalculer(ETUDIANT_ID, FORMATION_ID),
    )

    assert all(r.statut == StatutInscriptionEnum.TERMINEE for r in resultats)
    assert len(accessor.certificats) == 1
    assert service_module._verrous_paires == {}, "Les verrous libérés ne doivent pas s'accumuler"

@pytest.mark.asyncio
async def test_verrous_liberes_apres_saisie(accessor):
    accessor.add_enrollment(2, FORMATION_ID)
    niveau_1, _ = seances_par_niveau(accessor)

    await PresenceService(accessor).commit_attendance(saisie(niveau_1) + saisie(niveau_1, etudiant_id=2))

    assert service_module._verrous_paires == {}
    assert service_module._utilisateurs_paires == {}
