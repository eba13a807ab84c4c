"""Process-wide service objects, built once at startup and passed around."""
from dataclasses import dataclass
from pathlib import Path

import structlog

from coursechat import config
from coursechat.chat import CourseChat
from coursechat.db import CourseDatabase
from coursechat.llm_client import OllamaClient
from coursechat.rag.embeddings import EmbeddingGateway
from coursechat.rag.ingest import IngestPipeline
from coursechat.rag.retriever import Retriever
from coursechat.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


@dataclass
class Services:
    database: CourseDatabase
    vector_store: FAISSVectorStore
    llm_client: OllamaClient
    embedder: EmbeddingGateway
    pipeline: IngestPipeline
    retriever: Retriever
    chat: CourseChat


def wire_services(
    database: CourseDatabase,
    llm_client: OllamaClient,
    embedder: EmbeddingGateway,
) -> Services:
    """Connect the core components around one database and index."""
    vector_store = FAISSVectorStore(dimension=embedder.dimension)
    pipeline = IngestPipeline(database, vector_store, embedder)
    retriever = Retriever(database, vector_store, embedder)
    chat = CourseChat(retriever, llm_client, database)

    database.init_schema()
    pipeline.rebuild_index()

    return Services(
        database=database,
        vector_store=vector_store,
        llm_client=llm_client,
        embedder=embedder,
        pipeline=pipeline,
        retriever=retriever,
        chat=chat,
    )


def build_services(db_path: Path = None) -> Services:
    """Build services from configuration."""
    llm_client = OllamaClient()
    services = wire_services(
        database=CourseDatabase(db_path or config.DB_PATH),
        llm_client=llm_client,
        embedder=EmbeddingGateway(llm_client),
    )
    logger.info(
        "services_ready",
        db_path=str(services.database.db_path),
        vector_count=services.vector_store.ntotal,
        embedding_model=services.embedder.model,
    )
    return services
