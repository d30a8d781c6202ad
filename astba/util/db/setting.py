from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from pathlib import Path
from dotenv import load_dotenv
import logging

# --- Configuration de base ---
BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("config")


class Settings(BaseSettings):
    # --- Base de données ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./astba.db"

    # --- Structure des formations ---
    NIVEAUX_PAR_FORMATION: int = 4
    SEANCES_PAR_NIVEAU: int = 6

    # --- Progression / certification ---
    SEUIL_ABSENCES_RETARD: int = 5
    PREFIXE_CERTIFICAT: str = "ASTBA"

    # --- Config Pydantic ---
    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Validations ---
    @field_validator("DATABASE_URL", mode="before")
    def check_database_url(cls, v):
        if not v or not isinstance(v, str):
            raise ValueError("DATABASE_URL doit être défini et non vide.")
        return v

    @field_validator("NIVEAUX_PAR_FORMATION", "SEANCES_PAR_NIVEAU", "SEUIL_ABSENCES_RETARD")
    def check_strictement_positif(cls, v):
        if v < 1:
            raise ValueError("La valeur doit être supérieure ou égale à 1.")
        return v

    @field_validator("PREFIXE_CERTIFICAT")
    def check_prefixe(cls, v):
        if not v or "-" in v:
            raise ValueError("PREFIXE_CERTIFICAT doit être non vide et sans tiret.")
        return v

    # --- Logging sécurisé ---
    def log_config(self):
        logger.info("✅ Configuration chargée avec succès.")
        for key, value in self.model_dump().items():
            if any(secret in key.upper() for secret in ("PASSWORD", "SECRET")):
                value = "*****"
            elif key == "DATABASE_URL" and "@" in str(value):
                # masque les identifiants éventuels de l'URL
                value = "*****@" + str(value).split("@", 1)[1]
            logger.info(f"{key}: {value}")


# --- Initialisation ---
settings = Settings()

if __name__ == "__main__":
    settings.log_config()
