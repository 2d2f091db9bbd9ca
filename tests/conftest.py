"""
Shared fixtures: a small project tree and offline stand-ins for the model backends.
"""

import pytest

from treevec.core.config import VectorizationSettings
from treevec.vector.embeddings import DeterministicHashEmbedding
from treevec.vector.index import SimpleInMemoryVectorStore
from treevec.vector.summarizer import ITextGenerator, TextSummarizer
from treevec.vectorize.file_status import FileStatusService
from treevec.vectorize.orchestrator import VectorizationOrchestrator


class RecordingEmbedding(DeterministicHashEmbedding):
    """Hash embedder that remembers every text it embedded."""

    def __init__(self, dimension: int = 16):
        super().__init__(dimension)
        self.calls = []

    async def get_embedding(self, text: str):
        self.calls.append(text)
        return self.embed_text(text)


class FakeGenerator(ITextGenerator):
    """Returns a fixed-prefix summary of the last line of the prompt."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model unavailable")
        return "SUMMARY " + prompt.strip().splitlines()[-1]


@pytest.fixture
def project(tmp_path):
    """
    project/
        README.md
        src/main.py
        src/pkg/util.py
        docs/guide.txt
    plus entries every walk must skip.
    """
    root = tmp_path / "project"
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "README.md").write_text("# Project\nA small example project.\n")
    (root / "src" / "main.py").write_text("from pkg.util import add\nprint(add(1, 2))\n")
    (root / "src" / "pkg" / "util.py").write_text("def add(a, b):\n    return a + b\n")
    (root / "docs" / "guide.txt").write_text("How to use the project.\n")

    (root / ".git").mkdir()
    (root / ".git" / "config").write_text("[core]\n")
    (root / "node_modules" / "lib").mkdir(parents=True)
    (root / "node_modules" / "lib" / "index.js").write_text("module.exports = {};\n")
    (root / ".env").write_text("SECRET=1\n")
    return root


def make_orchestrator(store=None, embedding=None, generator=None, settings=None):
    store = store or SimpleInMemoryVectorStore()
    embedding = embedding or RecordingEmbedding()
    generator = generator or FakeGenerator()
    holder = {"settings": settings or VectorizationSettings()}

    orchestrator = VectorizationOrchestrator(
        store=store,
        embedding_provider=embedding,
        summarizer=TextSummarizer(generator),
        file_status=FileStatusService(store),
        settings_loader=lambda: holder["settings"],
    )
    orchestrator.settings_holder = holder
    return orchestrator


@pytest.fixture
def orchestrator():
    return make_orchestrator()
