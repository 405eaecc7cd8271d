import json
import os

import pytest

from secouristia.errors import ExternalServiceError
from secouristia.models import IndexedRecord
from secouristia.rag.faiss_store import FaissStore


def _fiche(ref, content, embedding, source="Referentiel_PSE.pdf"):
    return IndexedRecord(
        content=content,
        source=source,
        embedding=embedding,
        chapter=ref[:2],
        fiche_type=ref[2:4],
        fiche_ref=ref,
    )


@pytest.fixture
def store(settings):
    vs = FaissStore(settings)
    vs.write(_fiche("05PR08", "[05PR08 / 12-2022] PSE① Hémorragie externe", [1.0, 0.0, 0.0]))
    vs.write(
        IndexedRecord(content="Alerter les secours", source="Guide_SST.pdf", embedding=[0.0, 1.0, 0.0])
    )
    vs.write(
        _fiche("05AC01", "[05AC01 / 12-2022] Hémorragies", [0.9, 0.1, 0.0], source="Referentiel_PSC1.pdf")
    )
    vs.write(_fiche("02PR03", "[02PR03 / 06-2021] Bilan", [0.0, 0.0, 1.0]))
    return vs


def test_ids_are_sequential(settings):
    vs = FaissStore(settings)
    assert vs.write(IndexedRecord(content="a", source="x.pdf", embedding=[1.0, 0.0])) == 1
    assert vs.write(IndexedRecord(content="b", source="x.pdf", embedding=[0.0, 1.0])) == 2
    assert vs.count() == 2


def test_nearest_neighbors_above_threshold(store):
    hits = store.nearest_neighbors([1.0, 0.0, 0.0], 0.2, 10)

    assert [h.id for h in hits] == [1, 3]
    assert hits[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert hits[0].fiche_ref == "05PR08"
    assert hits[1].similarity < hits[0].similarity


def test_nearest_neighbors_category_filter(store):
    assert [h.id for h in store.nearest_neighbors([1.0, 0.0, 0.0], 0.2, 10, "psc")] == [3]
    assert store.nearest_neighbors([1.0, 0.0, 0.0], 0.2, 10, "SST") == []


def test_nearest_neighbors_max_count(store):
    assert len(store.nearest_neighbors([1.0, 0.0, 0.0], 0.2, 1)) == 1


def test_empty_store_has_no_neighbors(settings):
    assert FaissStore(settings).nearest_neighbors([1.0, 0.0], 0.2, 10) == []


def test_substring_filter_needs_every_term(store):
    hits = store.substring_filter(["HÉMORRAGIE", "externe"])
    assert [h.id for h in hits] == [1]

    hits = store.substring_filter(["hémorragie"])
    assert [h.id for h in hits] == [1, 3]
    assert hits[0].embedding == []


def test_substring_filter_category_and_limit(store):
    assert [h.id for h in store.substring_filter(["hémorragie"], "psc1")] == [3]
    assert len(store.substring_filter(["hémorragie"], limit=1)) == 1


def test_exact_lookup(store):
    found = store.exact_lookup("05AC01")
    assert found is not None
    assert found.id == 3
    assert found.source == "Referentiel_PSC1.pdf"
    assert store.exact_lookup("99ZZ99") is None


def test_by_category_and_type_are_ordered(store):
    assert [r.fiche_ref for r in store.by_category("05")] == ["05AC01", "05PR08"]
    assert [r.fiche_ref for r in store.by_type("PR")] == ["02PR03", "05PR08"]


def test_records_survive_reload(store, settings):
    reloaded = FaissStore(settings)
    assert reloaded.count() == 4
    assert reloaded.exact_lookup("05PR08").id == 1
    assert [h.id for h in reloaded.nearest_neighbors([0.0, 0.0, 1.0], 0.2, 10)] == [4]


def test_metadata_is_written_as_utf8(store, settings):
    with open(settings.faiss_meta_path, encoding="utf-8") as f:
        raw = f.read()
    assert "Hémorragie" in raw
    assert "embedding" not in json.loads(raw)[0]


def test_dimension_mismatch_is_rejected(store):
    with pytest.raises(ExternalServiceError):
        store.write(IndexedRecord(content="x", source="x.pdf", embedding=[1.0, 0.0]))
    with pytest.raises(ExternalServiceError):
        store.nearest_neighbors([1.0, 0.0], 0.2, 10)


def test_record_without_embedding_is_rejected(settings):
    with pytest.raises(ExternalServiceError):
        FaissStore(settings).write(IndexedRecord(content="x", source="x.pdf"))


def test_out_of_sync_files_are_detected(store, settings):
    with open(settings.faiss_meta_path, "w", encoding="utf-8") as f:
        json.dump([], f)
    with pytest.raises(RuntimeError, match="out of sync"):
        FaissStore(settings)


def test_reset_drops_everything(store, settings):
    store.reset()
    assert store.count() == 0
    assert not os.path.exists(settings.faiss_index_path)
    assert not os.path.exists(settings.faiss_meta_path)
    assert store.write(IndexedRecord(content="a", source="x.pdf", embedding=[1.0])) == 1


def test_deferred_writes_reach_disk_on_flush(settings):
    vs = FaissStore(settings, autosave=False)
    vs.write(IndexedRecord(content="a", source="x.pdf", embedding=[1.0, 0.0]))
    vs.write(IndexedRecord(content="b", source="x.pdf", embedding=[0.0, 1.0]))
    assert not os.path.exists(settings.faiss_meta_path)

    vs.flush()

    reloaded = FaissStore(settings)
    assert reloaded.count() == 2
    assert [h.id for h in reloaded.nearest_neighbors([0.0, 1.0], 0.2, 10)] == [2]


def test_failed_save_rolls_the_record_back(settings, monkeypatch):
    vs = FaissStore(settings)
    vs.write(IndexedRecord(content="a", source="x.pdf", embedding=[1.0, 0.0]))
    save = vs._save
    failures = [OSError("disk full")]

    def flaky_save():
        if failures:
            raise failures.pop()
        save()

    monkeypatch.setattr(vs, "_save", flaky_save)
    with pytest.raises(OSError):
        vs.write(IndexedRecord(content="b", source="x.pdf", embedding=[0.0, 1.0]))
    assert vs.count() == 1
    assert vs.index.ntotal == 1

    assert vs.write(IndexedRecord(content="b", source="x.pdf", embedding=[0.0, 1.0])) == 2
    assert FaissStore(settings).count() == 2
