import os
from typing import Dict, Iterable

from dotenv import load_dotenv
from langchain_google_genai import ChatGoogleGenerativeAI, GoogleGenerativeAIEmbeddings
from langchain_groq import ChatGroq

from room_doc_chat.exception.custom_exception import ValidationError
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.utils.config_loader import AppConfig

PROVIDER_KEYS = {
    "google": "GOOGLE_API_KEY",
    "groq": "GROQ_API_KEY",
}


class ApiKeyManager:
    """Loads the API keys of the providers that are actually configured."""

    def __init__(self, providers: Iterable[str]):
        load_dotenv()
        self.keys: Dict[str, str] = {}

        required = sorted({PROVIDER_KEYS[p] for p in providers})
        missing = []

        for k in required:
            if val := os.getenv(k):
                self.keys[k] = val
                log.info("Loaded %s from env", k)
            else:
                log.error("Missing required API key: %s", k)
                missing.append(k)

        if missing:
            raise ValidationError(f"Missing API keys: {', '.join(missing)}")

    def get(self, key: str) -> str:
        return self.keys[key]


class ModelLoader:
    """
    Responsible for:
    - Loading the embedding model used by the indexer and retriever
    - Loading the generation backend used by the QA pipeline
    """

    def __init__(self, config: AppConfig):
        self.config = config

        providers = {config.embedding_model.provider}
        providers.update(llm.provider for llm in config.llm.values())
        self.api_key_mgr = ApiKeyManager(providers)

    def load_embeddings(self):
        model_name = self.config.embedding_model.model_name
        log.info("Loading embedding model | model=%s", model_name)
        return GoogleGenerativeAIEmbeddings(
            model=model_name,
            google_api_key=self.api_key_mgr.get("GOOGLE_API_KEY"),
        )

    def load_llm(self, role: str = "rag"):
        """
        Load and return the configured LLM for a role.
        """
        if role not in self.config.llm:
            log.error("LLM role not found in config | role=%s", role)
            raise ValidationError(f"LLM role '{role}' not found in config")

        llm_config = self.config.llm[role]
        log.info(
            "Loading LLM | role=%s | provider=%s | model=%s",
            role,
            llm_config.provider,
            llm_config.model_name,
        )

        if llm_config.provider == "google":
            return ChatGoogleGenerativeAI(
                model=llm_config.model_name,
                google_api_key=self.api_key_mgr.get("GOOGLE_API_KEY"),
                temperature=llm_config.temperature,
                max_output_tokens=llm_config.max_tokens,
            )

        model_kwargs = {}
        if llm_config.top_p is not None:
            model_kwargs["top_p"] = llm_config.top_p

        return ChatGroq(
            model=llm_config.model_name,
            api_key=self.api_key_mgr.get("GROQ_API_KEY"),
            temperature=llm_config.temperature,
            max_tokens=llm_config.max_tokens,
            model_kwargs=model_kwargs,
        )
