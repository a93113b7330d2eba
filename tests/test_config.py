import pytest
from pydantic import ValidationError

from companion_core.config import (
    CompanionConfig, ConsolidationConfig, ContextConfig, EmbeddingConfig,
    RelationshipConfig, StorageConfig, load_config, read_yaml,
)

def test_companion_config_defaults():
    cfg = CompanionConfig()
    assert cfg.storage.backend == "sqlite"
    assert cfg.embedding.model == "text-embedding-3-small"
    assert cfg.embedding.dimension == 1536
    assert cfg.logging.level == "INFO"

def test_embedding_retry_defaults():
    cfg = EmbeddingConfig()
    assert cfg.max_attempts == 3
    assert cfg.backoff_seconds == 1.0
    assert cfg.timeout_seconds == 10.0
    assert cfg.max_input_chars == 8000

def test_consolidation_defaults():
    cfg = ConsolidationConfig()
    assert cfg.dedup_threshold == 0.9
    assert cfg.default_confidence == 0.8
    assert cfg.search_threshold == 0.7
    assert cfg.search_limit == 10
    assert cfg.batch_limit == 20
    assert cfg.gate_enabled is True

def test_relationship_and_context_defaults():
    assert RelationshipConfig().max_conflict_retries == 3
    ctx = ContextConfig()
    assert ctx.cache_ttl_seconds == 300
    assert ctx.max_memories == 3
    assert ctx.max_milestones == 3

def test_storage_rejects_parent_traversal():
    with pytest.raises(ValidationError):
        StorageConfig(sqlite_db_path="../outside/companion.db")

def test_storage_rejects_unknown_backend():
    with pytest.raises(ValidationError):
        StorageConfig(backend="postgres")

def test_storage_path_is_normalized():
    assert StorageConfig(sqlite_db_path="./memory//a.db").sqlite_db_path == "memory/a.db"

def test_read_yaml_substitutes_env(tmp_path, monkeypatch):
    monkeypatch.setenv("COMPANION_TEST_KEY", "sk-test")
    path = tmp_path / "conf.yaml"
    path.write_text("embedding:\n  api_key: ${COMPANION_TEST_KEY}\n  base_url: ${COMPANION_UNSET_VAR}\n", encoding="utf-8")

    data = read_yaml(str(path))
    assert data["embedding"]["api_key"] == "sk-test"
    assert data["embedding"]["base_url"] == "${COMPANION_UNSET_VAR}"

def test_load_config(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text(
        "storage:\n  backend: memory\n"
        "consolidation:\n  gate_enabled: false\n"
        "# 注释\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.storage.backend == "memory"
    assert cfg.consolidation.gate_enabled is False

def test_load_config_gbk_file(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_bytes("# 配置文件\nlogging:\n  level: DEBUG\n".encode("gbk"))
    assert load_config(str(path)).logging.level == "DEBUG"

def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(str(path)) == CompanionConfig()

def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))

def test_invalid_values_raise(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("embedding:\n  max_attempts: 0\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(str(path))
