"""
Calcul de la progression d'un étudiant dans une formation.

Fonctions pures sur un snapshot explicite (niveaux, séances, état de présence) :
aucune lecture ni écriture en base ici. Le chargement du snapshot est fait par
ProgressionService, la persistance par PresenceService.
"""
from typing import Dict, Iterable, List, Optional, Sequence

from astba.api.schema import (
    AvancementResponse, Identifiant, NiveauProgression, NiveauSnapshot,
    PresenceResponse, ProgressionResponse, SeanceResponse, SeanceSnapshot
)
from astba.util.helper.enum import (
    EtatPresenceEnum, StatutNiveauEnum, StatutProgressionEnum
)
from astba.util.db.setting import settings


def etat_presence(presence: Optional[PresenceResponse]) -> EtatPresenceEnum:
    """Traduit l'absence d'enregistrement en EN_ATTENTE, jamais en ABSENT."""
    if presence is None:
        return EtatPresenceEnum.EN_ATTENTE
    return EtatPresenceEnum.PRESENT if presence.present else EtatPresenceEnum.ABSENT


def selectionner_presence(presences: Iterable[PresenceResponse], etudiant_id: Identifiant) -> Optional[PresenceResponse]:
    """Retourne l'enregistrement de l'étudiant pour une séance (le plus récent en cas de doublon)."""
    candidats = [p for p in presences if p.etudiant_id == etudiant_id]
    if not candidats:
        return None
    return max(candidats, key=lambda p: (p.marque_le is not None, p.marque_le or 0, str(p.id)))


def construire_snapshot_niveau(niveau_id: Identifiant, numero_niveau: int, nom: str,
                               seances: Sequence[SeanceResponse],
                               presences: Dict[Identifiant, Optional[PresenceResponse]]) -> NiveauSnapshot:
    """Assemble le snapshot d'un niveau ; `presences` est indexé par id de séance."""
    return NiveauSnapshot(
        niveau_id=niveau_id,
        numero_niveau=numero_niveau,
        nom=nom,
        seances=[
            SeanceSnapshot(
                seance_id=seance.id,
                numero_seance=seance.numero_seance,
                etat=etat_presence(presences.get(seance.id)),
            )
            for seance in seances
        ],
    )


def _trier(niveaux: Iterable[NiveauSnapshot]) -> List[NiveauSnapshot]:
    return sorted(niveaux, key=lambda n: n.numero_niveau)


def evaluer_niveau(niveau: NiveauSnapshot) -> NiveauProgression:
    total = len(niveau.seances)
    marquees = sum(1 for s in niveau.seances if s.etat != EtatPresenceEnum.EN_ATTENTE)
    presentes = sum(1 for s in niveau.seances if s.etat == EtatPresenceEnum.PRESENT)

    # Une séance non marquée suspend le jugement ; un niveau vide n'est jamais jugé
    if total == 0 or marquees < total:
        statut = StatutNiveauEnum.EN_COURS
    elif presentes == total:
        statut = StatutNiveauEnum.VALIDE
    else:
        statut = StatutNiveauEnum.ECHOUE

    return NiveauProgression(
        niveau_id=niveau.niveau_id,
        numero_niveau=niveau.numero_niveau,
        nom=niveau.nom,
        total_seances=total,
        seances_marquees=marquees,
        seances_presentes=presentes,
        statut=statut,
    )


def evaluate_progress(etudiant_id: Identifiant, formation_id: Identifiant,
                      niveaux: Iterable[NiveauSnapshot],
                      seuil_retard: Optional[int] = None) -> ProgressionResponse:
    """
    Évalue la progression d'un étudiant sur une formation.

    - statut_formation = completed ssi tous les niveaux sont validés (et il y en a au moins un)
    - statut_formation = failed ssi un niveau est échoué et aucun niveau n'est en cours
    - sinon in_progress
    """
    if seuil_retard is None:
        seuil_retard = settings.SEUIL_ABSENCES_RETARD

    ordonnes = _trier(niveaux)
    resultats = [evaluer_niveau(n) for n in ordonnes]
    seances = [s for n in ordonnes for s in n.seances]

    total_niveaux = len(resultats)
    niveaux_valides = sum(1 for r in resultats if r.statut == StatutNiveauEnum.VALIDE)
    un_echec = any(r.statut == StatutNiveauEnum.ECHOUE for r in resultats)
    un_en_cours = any(r.statut == StatutNiveauEnum.EN_COURS for r in resultats)

    if total_niveaux > 0 and niveaux_valides == total_niveaux:
        statut_formation = StatutProgressionEnum.TERMINEE
    elif un_echec and not un_en_cours:
        statut_formation = StatutProgressionEnum.ECHOUEE
    else:
        statut_formation = StatutProgressionEnum.EN_COURS

    nombre_absences = sum(1 for s in seances if s.etat == EtatPresenceEnum.ABSENT)

    return ProgressionResponse(
        etudiant_id=etudiant_id,
        formation_id=formation_id,
        total_seances=len(seances),
        seances_suivies=sum(1 for s in seances if s.etat == EtatPresenceEnum.PRESENT),
        nombre_absences=nombre_absences,
        niveaux_valides=niveaux_valides,
        total_niveaux=total_niveaux,
        eligible=statut_formation == StatutProgressionEnum.TERMINEE,
        statut_formation=statut_formation,
        en_retard=nombre_absences >= seuil_retard,
        niveaux=resultats,
    )


def compute_next_level(niveaux: Iterable[NiveauSnapshot]) -> AvancementResponse:
    """
    Niveau à enregistrer sur l'inscription (avancement strict).

    Un niveau n'est franchi que si toutes ses séances sont marquées présentes ;
    une séance absente ou non marquée bloque l'avancement.
    """
    ordonnes = _trier(niveaux)
    if not ordonnes:
        return AvancementResponse(niveau_suivant=1, termine=False)

    numero_max = ordonnes[-1].numero_niveau
    niveau_suivant = numero_max
    termine = True

    for niveau in ordonnes:
        presentes = sum(1 for s in niveau.seances if s.etat == EtatPresenceEnum.PRESENT)
        if not niveau.seances or presentes != len(niveau.seances):
            niveau_suivant = niveau.numero_niveau
            termine = False
            break

    return AvancementResponse(niveau_suivant=min(max(niveau_suivant, 1), max(numero_max, 1)), termine=termine)
