"""Tests for service interfaces and dotted-path loading."""

import pytest

from analysis_consumer.services import (
    AnalysisStore,
    Analyzer,
    Scorer,
    SearchIndex,
    import_object,
    load_service,
)
from analysis_consumer.storage import CouchAnalysisStore, ElasticsearchIndex


class EchoAnalyzer:
    def __init__(self, prefix=""):
        self.prefix = prefix

    async def analyze(self, name, options):
        return {"name": self.prefix + name}


def build_echo(prefix=""):
    return EchoAnalyzer(prefix)


NOT_CALLABLE = {"analyze": None}


class TestImportObject:
    def test_colon_path(self):
        assert import_object("os.path:join").__name__ == "join"

    def test_dotted_path(self):
        assert import_object("os.path.join").__name__ == "join"

    @pytest.mark.parametrize("path", ["", "nodots", ":attr", "module:"])
    def test_malformed_path(self, path):
        with pytest.raises(ValueError, match="Invalid import path"):
            import_object(path)

    def test_missing_module(self):
        with pytest.raises(ValueError, match="Cannot import module"):
            import_object("no_such_module_anywhere:build")

    def test_missing_attribute(self):
        with pytest.raises(ValueError, match="has no attribute"):
            import_object("os.path:no_such_function")


class TestLoadService:
    def test_factory_receives_dependencies(self):
        analyzer = load_service(f"{__name__}:build_echo", Analyzer, prefix="npm/")

        assert isinstance(analyzer, EchoAnalyzer)
        assert analyzer.prefix == "npm/"

    def test_wrong_protocol(self):
        with pytest.raises(ValueError, match="does not implement Scorer"):
            load_service(f"{__name__}:build_echo", Scorer)

    def test_not_callable(self):
        with pytest.raises(ValueError, match="not callable"):
            load_service(f"{__name__}:NOT_CALLABLE", Analyzer)


class TestProtocols:
    def test_storage_adapters_implement_protocols(self):
        assert isinstance(CouchAnalysisStore("http://couch:5984", "npms"), AnalysisStore)
        assert isinstance(ElasticsearchIndex("http://es:9200", "npms-current"), SearchIndex)
