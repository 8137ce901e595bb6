import uuid

from shipdocs.models.client import Client
from shipdocs.services.client_directory import (
    MATCH_EXACT,
    MATCH_SUBSTRING,
    MATCH_TAX_ID,
    match_clients,
    normalize_text,
)


def make_client(name: str, tax_id: str = "") -> Client:
    return Client(id=uuid.uuid4(), name=name, tax_id=tax_id, address="")


def test_normalize_text_strips_punctuation_and_case():
    assert normalize_text("  ACME, Corp.  ") == "acme corp"
    assert normalize_text("J-12345678-9") == "j123456789"
    assert normalize_text("Petro   (Andes)  S.A.") == "petro andes sa"
    assert normalize_text(None) == ""


def test_exact_name_match():
    acme = make_client("Acme Corp.")
    candidates = match_clients("ACME CORP", None, [make_client("Other Inc"), acme])

    assert len(candidates) == 1
    assert candidates[0].client is acme
    assert candidates[0].reason == MATCH_EXACT


def test_substring_match_respects_length_ratio():
    long_name = make_client("Acme Corp International Holdings")
    short_name = make_client("Acme Corp Intl")

    candidates = match_clients("Acme Corp International", None, [long_name, short_name])

    assert [c.client for c in candidates] == [long_name]
    assert candidates[0].reason == MATCH_SUBSTRING


def test_short_substring_rejected():
    # "acme" is far less than half of the detected name
    candidates = match_clients("Acme Corporation of the Americas", None, [make_client("Acme")])
    assert candidates == []


def test_tax_id_match_when_names_differ():
    client = make_client("Acme Venezuela", tax_id="J-12345678-9")

    candidates = match_clients("Totally Different SA", "j123456789", [client])

    assert len(candidates) == 1
    assert candidates[0].reason == MATCH_TAX_ID


def test_blank_tax_ids_never_match():
    client = make_client("Acme Venezuela", tax_id="")
    assert match_clients("Someone Else", "", [client]) == []


def test_candidates_ranked_exact_then_tax_id_then_substring():
    exact = make_client("Acme Corp")
    by_tax = make_client("Acme Holdings", tax_id="J-1")
    partial = make_client("Acme Corp SA")

    candidates = match_clients("Acme Corp", "J-1", [partial, by_tax, exact])

    assert [c.client for c in candidates] == [exact, by_tax, partial]


def test_custom_min_ratio():
    client = make_client("Acme Corp")
    assert match_clients("Acme Corp SA", None, [client], min_ratio=0.5)[0].reason == MATCH_SUBSTRING
    assert match_clients("Acme Corp SA", None, [client], min_ratio=0.9) == []


def test_short_substring_rejected_even_with_matching_tax_id():
    client = make_client("Acme Corporation International Holdings", tax_id="J-1")
    assert match_clients("Acme", "J-1", [client]) == []


def test_passing_substring_ranked_as_substring_despite_tax_id():
    client = make_client("Acme Corp SA", tax_id="J-1")

    candidates = match_clients("Acme Corp", "J-1", [client])

    assert [c.reason for c in candidates] == [MATCH_SUBSTRING]
