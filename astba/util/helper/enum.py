from enum import Enum
from sqlalchemy import Column, DateTime, func

# ──────────────────────────────────────────────────────────────────────────────
# Mixins utilitaires
# ──────────────────────────────────────────────────────────────────────────────

class TimestampMixin(object):
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

# ──────────────────────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────────────────────

class StatutFormationEnum(str, Enum):
    ACTIVE = "active"
    ARCHIVEE = "archived"


class StatutSeanceEnum(str, Enum):
    EN_ATTENTE = "pending"
    EN_COURS = "en_cours"
    FINI = "fini"


class StatutInscriptionEnum(str, Enum):
    ACTIVE = "active"
    TERMINEE = "completed"
    ABANDONNEE = "dropped"

# ──────────────────────────────────────────────────────────────────────────────
# Enums pour la progression et la certification
# ──────────────────────────────────────────────────────────────────────────────

class EtatPresenceEnum(str, Enum):
    PRESENT = "present"            # Présence marquée
    ABSENT = "absent"              # Absence marquée
    EN_ATTENTE = "pending"         # Aucun enregistrement : pas encore marqué


class StatutNiveauEnum(str, Enum):
    EN_COURS = "in_progress"       # Au moins une séance non marquée
    VALIDE = "passed"              # Toutes les séances marquées présentes
    ECHOUE = "failed"              # Toutes marquées, au moins une absence


class StatutProgressionEnum(str, Enum):
    EN_COURS = "in_progress"
    TERMINEE = "completed"
    ECHOUEE = "failed"
