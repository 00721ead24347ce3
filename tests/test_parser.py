import pytest

from molquery.errors import QueryError, QueryParseError
from molquery.query import (
    ambient_residues,
    atoms_by_element,
    atoms_by_name,
    atoms_in_box,
    backbone,
    cartoons,
    chains_by_id,
    complement,
    entities,
    het_groups,
    or_,
    parse,
    parse_builder,
    polymer_names,
    register_modifier,
    registered_modifiers,
    residues,
    sequence,
    unregister_modifier,
    whole_residues,
)


@pytest.fixture
def cleanup_modifiers():
    yield
    for name in registered_modifiers():
        unregister_modifier(name)


def test_parse_matches_builder(model) -> None:
    text = 'atomsByElement("FE").ambientResidues(3).wholeResidues()'
    built = whole_residues(ambient_residues(atoms_by_element("FE"), 3))

    assert parse_builder(text) == built

    from_text = parse(text)(model.query_context).union_atom_indices()
    from_builder = built.compile()(model.query_context).union_atom_indices()
    assert from_text.tolist() == from_builder.tolist() == list(range(9, 17))


def test_parse_polymer_names() -> None:
    assert parse_builder("polymerNames(['CB'], true)") == polymer_names(["CB"], True)
    assert parse_builder("polymer_names(['CA'], false)") == polymer_names(["CA"])
    assert parse_builder("cartoons()") == cartoons()


def test_parse_literals() -> None:
    assert parse_builder("residues({name: 'HIS', seq_number: 5})") == residues(
        {"name": "HIS", "seq_number": 5}
    )
    assert parse_builder('residues({"asymId": "B"})') == residues({"asym_id": "B"})
    assert parse_builder("atoms_in_box([-1, 0.5, 2e1], [1, 1, 30])") == atoms_in_box(
        (-1, 0.5, 20), (1, 1, 30)
    )
    assert parse_builder("sequence(null, 'A', {seqNumber: 1}, {seqNumber: 4})") == sequence(
        None, "A", {"seq_number": 1}, {"seq_number": 4}
    )


def test_parse_nested_queries() -> None:
    text = "or(het_groups(), atoms_by_name('CA')).inside(chainsById('A')).complement()"

    assert parse_builder(text) == complement(
        or_(het_groups(), atoms_by_name("CA")).inside(chains_by_id("A"))
    )


@pytest.mark.parametrize(
    "builder",
    [
        atoms_by_element("FE").ambient_residues(5.5).whole_residues(),
        or_(het_groups(), backbone()).union(),
        residues({"name": "ALA", "ins_code": "A"}).intersect_with(entities({"type": "polymer"})),
        sequence("1", "A", {"seq_number": 2}, {"seq_number": 9, "ins_code": "B"}),
        atoms_in_box([0, 0, 0], [1.5, 2, 3]).flatten(atoms_by_name("CA")),
        polymer_names(["CA", "P"], True),
        cartoons().complement(),
    ],
)
def test_text_round_trip(builder) -> None:
    assert parse_builder(builder.to_text()) == builder


def test_text_source_is_embedded() -> None:
    builder = complement('residues_by_name("HOH")')

    assert builder.to_text() == 'residues_by_name("HOH").complement()'


def test_builders_with_callables_have_no_text() -> None:
    with pytest.raises(QueryError) as excinfo:
        het_groups().filter(lambda fragment: True).to_text()
    assert excinfo.value.code == "not_textual"


def test_syntax_error_position() -> None:
    with pytest.raises(QueryParseError) as excinfo:
        parse_builder('atoms_by_element("FE") $')

    assert excinfo.value.code == "parse_error"
    assert excinfo.value.position == 23
    assert excinfo.value.details["line"] == 1


def test_unterminated_input() -> None:
    with pytest.raises(QueryParseError) as excinfo:
        parse_builder('atoms_by_element("FE"')
    assert excinfo.value.code == "parse_error"

    with pytest.raises(QueryParseError):
        parse_builder("   ")


def test_unknown_names() -> None:
    with pytest.raises(QueryParseError) as excinfo:
        parse_builder("foo()")
    assert excinfo.value.code == "unknown_function"
    assert excinfo.value.position == 0

    with pytest.raises(QueryParseError) as excinfo:
        parse_builder("everything().bar()")
    assert excinfo.value.code == "unknown_modifier"
    assert excinfo.value.position == 13


def test_invalid_arguments() -> None:
    with pytest.raises(QueryParseError) as excinfo:
        parse_builder("everything(1)")
    assert excinfo.value.code == "invalid_arguments"

    with pytest.raises(QueryParseError) as excinfo:
        parse_builder("everything().ambient_residues(-1)")
    assert excinfo.value.code == "invalid_radius"
    assert excinfo.value.position == 13

    with pytest.raises(QueryParseError) as excinfo:
        parse_builder("residues({name: 'A', name: 'B'})")
    assert excinfo.value.code == "invalid_schema"

    with pytest.raises(QueryParseError) as excinfo:
        parse_builder("residues({colour: 'red'})")
    assert excinfo.value.code == "invalid_schema"


def test_registered_modifier(model, cleanup_modifiers) -> None:
    register_modifier("around", lambda q, r: q.ambient_residues(r).union())

    parsed = parse_builder("atoms_by_element('FE').around(3)")
    assert parsed == atoms_by_element("FE").ambient_residues(3).union()
    assert atoms_by_element("FE").modify("around", 3) == parsed
    assert [f.atom_indices.tolist() for f in model.query(parsed)] == [list(range(9, 17))]

    with pytest.raises(QueryParseError) as excinfo:
        parse_builder("atoms_by_element('FE').around()")
    assert excinfo.value.code == "invalid_arguments"


def test_modifier_returning_query_function(model, cleanup_modifiers) -> None:
    register_modifier("first", lambda q: (lambda ctx: q.compile()(ctx)))

    seq = model.query(atoms_by_name("CA").modify("first"))
    assert len(seq) == 3


def test_register_modifier_validation(cleanup_modifiers) -> None:
    for name in ("complement", "union", "filter", "residues", "_hidden", "not an id"):
        with pytest.raises(QueryError) as excinfo:
            register_modifier(name, lambda q: q)
        assert excinfo.value.code == "invalid_modifier"

    register_modifier("mine", lambda q: q)
    with pytest.raises(QueryError) as excinfo:
        register_modifier("mine", lambda q: q)
    assert excinfo.value.code == "duplicate_modifier"

    with pytest.raises(QueryError):
        register_modifier("other", "not callable")
    with pytest.raises(QueryError) as excinfo:
        het_groups().modify("missing")
    assert excinfo.value.code == "unknown_modifier"
