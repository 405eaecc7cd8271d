from secouristia.rag.parser import (
    StructuralParser,
    chapter_name,
    chapter_stats,
    clean_text,
    detect_level,
    fiche_type,
)
from conftest import PSE_TEXT


def _parser():
    return StructuralParser()


def test_two_fiches_are_detected_with_their_metadata():
    fiches = _parser().parse_fiches(PSE_TEXT, "Referentiel_PSE.pdf")

    assert [f.reference for f in fiches] == ["05PR08", "05PR09"]
    first = fiches[0]
    assert first.chapter == "05"
    assert first.chapter_name == "Urgences vitales"
    assert first.fiche_type == "procedure"
    assert first.fiche_type_code == "PR"
    assert first.fiche_type_name == "Procédure"
    assert first.fiche_number == "08"
    assert first.level == 1
    assert first.update_date == "12-2022"
    assert first.source == "Referentiel_PSE.pdf"
    assert first.content.startswith("[05PR08 / 12-2022] PSE① Hémorragie externe")
    assert "Appuyer fortement" in first.content
    assert "05PR09" not in first.content


def test_fiches_partition_text_from_first_header():
    raw = "Sommaire du référentiel\n\n" + PSE_TEXT
    text = clean_text(raw)
    fiches = _parser().parse_fiches(raw)

    assert fiches[0].start == text.index("[05PR08")
    for current, following in zip(fiches, fiches[1:]):
        assert current.end == following.start
    assert fiches[-1].end == len(text)
    assert "".join(text[f.start:f.end] for f in fiches) == text[fiches[0].start:]


def test_references_are_unique_per_document():
    raw = (
        "[01AC01 / 05-2021] PSE① Le secouriste\nTexte.\n"
        "[02PR03 / 06-2021] PSE② Bilan circonstanciel\nTexte.\n"
        "[02FT10 / 06-2021] Prise du pouls\nTexte.\n"
    )
    refs = [f.reference for f in _parser().parse_fiches(raw)]
    assert len(refs) == len(set(refs)) == 3


def test_header_with_spaces_around_slash():
    fiches = _parser().parse_fiches("[08FT12/01-2020] PSE2 Attelle\nPoser l'attelle.")
    assert fiches[0].reference == "08FT12"
    assert fiches[0].update_date == "01-2020"
    assert fiches[0].level == 2
    assert fiches[0].fiche_type == "technique"


def test_unknown_chapter_gets_generic_name():
    fiches = _parser().parse_fiches("[13AC01 / 01-2023] Annexe\nTexte de l'annexe.")
    assert fiches[0].chapter == "13"
    assert fiches[0].chapter_name == "Chapitre 13"


def test_fiche_with_empty_body_is_kept():
    fiches = _parser().parse_fiches("[03AC02 / 02-2020]\n[03AC03 / 02-2020] PSE① Suite\nTexte.")
    assert [f.reference for f in fiches] == ["03AC02", "03AC03"]
    assert fiches[0].content == "[03AC02 / 02-2020]"


def test_no_header_yields_no_fiche():
    assert _parser().parse_fiches("Un texte sans aucun en-tête de fiche.") == []
    assert _parser().parse_fiches("") == []


def test_parse_falls_back_to_chunks():
    text = "Phrase de remplissage pour le découpage. " * 30
    items = _parser().parse(text, "Guide_SST.pdf")
    assert items
    assert all(not hasattr(item, "reference") for item in items)


def test_detect_level_scans_only_the_head():
    assert detect_level("[05PR08 / 12-2022] PSE① Titre") == 1
    assert detect_level("[05PR08 / 12-2022] PSE ② Titre") == 2
    assert detect_level("[05PR08 / 12-2022] Titre") is None
    assert detect_level("x" * 250 + "PSE①") is None


def test_lookup_helpers():
    assert chapter_name("07") == "Atteintes circonstancielles"
    assert fiche_type("AC") == ("knowledge", "Apport de Connaissances")
    assert fiche_type("ZZ") == (None, "ZZ")


def test_clean_text_caps_blank_runs():
    assert clean_text("a\r\n\n\n\n\n\nb") == "a\n\n\nb"


def test_chapter_stats_counts_per_chapter():
    raw = (
        "[02AC01 / 01-2020] A\nTexte.\n"
        "[01AC01 / 01-2020] B\nTexte.\n"
        "[02PR02 / 01-2020] C\nTexte.\n"
    )
    stats = chapter_stats(_parser().parse_fiches(raw))
    assert stats == {"01": 1, "02": 2}
    assert list(stats) == ["01", "02"]
