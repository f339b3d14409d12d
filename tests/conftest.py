import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from room_doc_chat.app_context import AppContext
from room_doc_chat.auth.identity import ConfigRoleResolver
from room_doc_chat.utils.config_loader import AppConfig
from tests.fakes import EMBEDDING_SIZE, ScriptedChatModel


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig.model_validate(
        {
            "database": {"url": f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}"},
            "vector_store": {"base_dir": str(tmp_path / "faiss_index")},
            "uploads": {"dir": str(tmp_path / "data")},
            "chunking": {"size": 200, "overlap": 20},
            "retriever": {"top_k": 5},
            "auth": {"user_roles": {"1": ["admin"], "2": ["admin"], "7": ["editor"]}},
        }
    )


@pytest.fixture
def embeddings() -> Embeddings:
    return DeterministicFakeEmbedding(size=EMBEDDING_SIZE)


@pytest.fixture
def llm() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def app_context(config, embeddings, llm) -> AppContext:
    """Wired but not started; suitable for handing to the HTTP app."""
    return AppContext.build(
        config,
        embeddings=embeddings,
        llm=llm,
        role_resolver=ConfigRoleResolver(config.auth.user_roles, config.auth.default_roles),
    )


@pytest.fixture
async def ctx(app_context):
    await app_context.startup()
    yield app_context
    await app_context.shutdown()
