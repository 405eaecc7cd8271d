import logging
import re

from ibm_watsonx_ai import Credentials
from ibm_watsonx_ai.foundation_models import ModelInference
from ibm_watsonx_ai.metanames import GenTextParamsMetaNames as GenParams

from secouristia.config import Settings
from secouristia.errors import ExternalServiceError

logger = logging.getLogger(__name__)

REFORMULATION_PROMPT = (
    "Tu es un expert en secourisme français. Reformule la question de l'utilisateur "
    "en utilisant les termes techniques officiels des référentiels PSE1, PSE2, PSC1 et SST.\n\n"
    "Règles :\n"
    "- Retourne UNIQUEMENT les mots-clés techniques, séparés par des espaces\n"
    "- Pas de phrase, pas de ponctuation, pas d'explication\n"
    "- Utilise le vocabulaire exact des référentiels français\n"
    "- Ajoute les synonymes techniques pertinents\n\n"
    "Exemples :\n"
    '- "étouffement" → "obstruction voies aériennes corps étranger désobstruction"\n'
    '- "malaise cardiaque" → "douleur thoracique arrêt cardiaque RCP DAE"\n'
    '- "saignement" → "hémorragie externe compression plaie"\n'
    '- "brûlure" → "brûlure thermique chimique refroidissement"\n'
    '- "fracture" → "traumatisme osseux immobilisation attelle"\n'
    '- "inconscient" → "perte connaissance PLS libération voies aériennes"'
)


class QueryReformulator:
    """Rewrites a user question into technical referential keywords."""

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        if client is None:
            credentials = Credentials(
                api_key=settings.ibm_cloud_api_key,
                url=f"https://{settings.watsonx_region}.ml.cloud.ibm.com",
            )
            client = ModelInference(
                model_id=settings.watsonx_gen_model,
                project_id=settings.watsonx_project_id,
                credentials=credentials,
            )
        self.client = client

    def build_prompt(self, question: str) -> str:
        return f"{REFORMULATION_PROMPT}\n\nQuestion : {question}\nMots-clés :"

    def clean_output(self, text: str) -> str:
        """Keep the first non-empty line, without labels, quotes or punctuation."""
        lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
        if not lines:
            return ""
        cleaned = re.sub(r"^(?:mots-clés|keywords|réponse)\s*:\s*", "", lines[0], flags=re.IGNORECASE)
        cleaned = cleaned.strip().strip('"«»').strip()
        cleaned = re.sub(r"[,;.!?]+", " ", cleaned)
        return re.sub(r"\s+", " ", cleaned).strip()

    def _generate(self, prompt: str) -> str:
        params = {
            GenParams.TEMPERATURE: float(self.settings.temperature),
            GenParams.MAX_NEW_TOKENS: 100,
            GenParams.TRUNCATE_INPUT_TOKENS: 0,
        }
        response = self.client.generate(prompt=prompt, params=params)
        data = response.get_result() if hasattr(response, "get_result") else response
        if isinstance(data, str):
            return data
        if isinstance(data, dict):
            if data.get("results"):
                return data["results"][0].get("generated_text", "")
            if "generated_text" in data:
                return data["generated_text"]
            return ""
        if hasattr(response, "generated_text"):
            return response.generated_text  # type: ignore[attr-defined]
        return str(data)

    def reformulate(self, question: str) -> str:
        """Technical keyword string for ``question``.

        Returns the question itself when the model output holds no keyword.

        Raises:
            ExternalServiceError: If the generation call fails.
        """
        try:
            text = self._generate(self.build_prompt(question))
        except Exception as e:
            raise ExternalServiceError(f"watsonx.ai generation request failed: {e}") from e
        keywords = self.clean_output(text)
        if not keywords:
            logger.warning("Empty reformulation, using original question")
        return keywords or question
