import numpy as np
import pytest

from molquery.errors import QueryError
from molquery.model import AtomRecord, ResidueRecord, build_model
from molquery.query import (
    COMPLEMENT_TAG,
    Context,
    algebraic,
    ambient_residues,
    atoms_by_element,
    atoms_by_id,
    atoms_by_name,
    atoms_from_indices,
    atoms_in_box,
    backbone,
    cartoons,
    chains,
    chains_by_id,
    chains_from_indices,
    complement,
    entities,
    everything,
    filter_,
    flatten,
    het_groups,
    inside,
    intersect_with,
    non_het_polymer,
    not_entities,
    or_,
    polymer_names,
    residues,
    residues_by_id,
    residues_by_name,
    residues_from_indices,
    sequence,
    sidechain,
    union,
    whole_residues,
)


def _atoms(seq) -> list:
    return [fragment.atom_indices.tolist() for fragment in seq]


def test_everything_is_a_single_fragment(model) -> None:
    seq = model.query(everything())

    assert _atoms(seq) == [list(range(19))]
    assert seq[0].tag == 0


def test_atoms_by_property_one_fragment_per_atom(model) -> None:
    assert _atoms(model.query(atoms_by_name("CA"))) == [[1], [6], [10]]
    assert _atoms(model.query(atoms_by_element("o"))) == [[3], [8], [12], [14], [17], [18]]
    assert _atoms(model.query(atoms_by_element("fe"))) == [[15]]
    assert _atoms(model.query(atoms_by_id(1, 19))) == [[0], [18]]


def test_residues_by_schema(model) -> None:
    assert _atoms(model.query(residues({"name": "GLY"}))) == [[5, 6, 7, 8]]
    assert _atoms(model.query(residues_by_name("HOH"))) == [[17], [18]]
    assert _atoms(model.query(residues_by_id(3))) == [list(range(9, 15))]
    assert _atoms(model.query(residues({"asymId": "A", "seqNumber": 1}))) == [[0, 1, 2, 3, 4]]
    assert _atoms(model.query(residues({"type": "non-polymer"}))) == [[15, 16]]
    assert _atoms(model.query(residues({"name": "XYZ"}))) == []


def test_residues_match_any_schema_in_model_order(model) -> None:
    seq = model.query(residues({"name": "SER"}, {"name": "ALA"}))

    assert [fragment.tag for fragment in seq] == [0, 9]


def test_chains_and_entities(model) -> None:
    assert _atoms(model.query(chains_by_id("B"))) == [[15, 16]]
    assert _atoms(model.query(chains({"entityId": "3"}))) == [[17, 18]]
    assert _atoms(model.query(entities({"type": "water"}))) == [[17, 18]]
    assert _atoms(model.query(not_entities({"type": "water"}))) == [
        list(range(15)),
        [15, 16],
    ]
    assert _atoms(model.query(entities({"type": "water"}).complement())) == [list(range(17))]


def test_from_indices(model) -> None:
    assert _atoms(model.query(residues_from_indices([4, 1]))) == [[5, 6, 7, 8], [17]]
    assert _atoms(model.query(chains_from_indices([1]))) == [[15, 16]]
    assert _atoms(model.query(atoms_from_indices([5, 2, 2]))) == [[2, 5]]

    with pytest.raises(QueryError) as excinfo:
        model.query(residues_from_indices([6]))
    assert excinfo.value.code == "invalid_index"
    with pytest.raises(QueryError):
        model.query(atoms_from_indices([19]))


def test_sequence_range(model) -> None:
    seq = model.query(sequence("1", "A", {"seq_number": 2}, {"seq_number": 3}))

    assert _atoms(seq) == [list(range(5, 15))]
    assert _atoms(model.query(sequence(None, "A", {"seqNumber": 3}, {"seqNumber": 9}))) == [
        list(range(9, 15))
    ]
    assert _atoms(model.query(sequence("2", "A", {"seq_number": 1}, {"seq_number": 3}))) == []


def _insertion_model():
    residues_ = [(1, ""), (2, ""), (3, ""), (3, "A"), (4, "")]
    records = [
        AtomRecord(
            id=i + 1,
            name="CA",
            element="C",
            residue=ResidueRecord("ALA", seq, ins_code=ins),
            coords=(float(i), 0.0, 0.0),
        )
        for i, (seq, ins) in enumerate(residues_)
    ]
    return build_model(records, model_id="1", id="ins")


def test_sequence_range_bounds_without_insertion_code() -> None:
    model = _insertion_model()

    assert _atoms(model.query(sequence("1", "A", {"seq_number": 2}, {"seq_number": 3}))) == [
        [1, 2, 3]
    ]
    assert _atoms(model.query(sequence("1", "A", {"seq_number": 3}, {"seq_number": 4}))) == [
        [2, 3, 4]
    ]
    assert _atoms(model.query(residues({"seq_number": 3}))) == [[2], [3]]


def test_sequence_range_bounds_with_insertion_code() -> None:
    model = _insertion_model()

    end_at_3 = sequence("1", "A", {"seq_number": 2}, {"seq_number": 3, "ins_code": ""})
    start_at_3a = sequence("1", "A", {"seq_number": 3, "ins_code": "A"}, {"seq_number": 4})

    assert _atoms(model.query(end_at_3)) == [[1, 2]]
    assert _atoms(model.query(start_at_3a)) == [[3, 4]]


def test_sequence_requires_numbers() -> None:
    with pytest.raises(QueryError) as excinfo:
        sequence("1", "A", {"name": "ALA"}, {"seq_number": 3})
    assert excinfo.value.code == "invalid_schema"


def test_het_groups_and_polymer(model) -> None:
    assert _atoms(model.query(het_groups())) == [[15, 16]]
    assert _atoms(model.query(non_het_polymer())) == [list(range(15))]


def test_polymer_names(model) -> None:
    assert _atoms(model.query(polymer_names(["CB"]))) == [[0, 1, 2, 3, 4] + list(range(9, 15))]
    assert _atoms(model.query(polymer_names(["CB"], True))) == [[5, 6, 7, 8]]
    assert _atoms(model.query(polymer_names(["FE"]))) == []
    assert _atoms(model.query(cartoons())) == [list(range(15))]


def test_polymer_names_respects_context_mask(model) -> None:
    ctx = Context.of_atom_indices(model, [1, 4, 6, 15])

    assert _atoms(polymer_names(["CB"]).compile()(ctx)) == [[1, 4]]


def test_polymer_names_validation() -> None:
    with pytest.raises(QueryError):
        polymer_names("CA")
    with pytest.raises(QueryError):
        polymer_names(["CA"], "yes")


def test_backbone_and_sidechain(model) -> None:
    assert _atoms(model.query(backbone())) == [[0, 1, 2, 3, 5, 6, 7, 8, 9, 10, 11, 12]]
    assert _atoms(model.query(sidechain())) == [[4, 13, 14]]


def test_algebraic_query(model) -> None:
    p = algebraic.and_(
        algebraic.equal(algebraic.residue_name, algebraic.value("SER")),
        algebraic.greater_equal(algebraic.residue_seq_number, algebraic.value(3)),
    )
    assert _atoms(model.query(algebraic.query(p))) == [list(range(9, 15))]

    in_range = algebraic.in_range(algebraic.residue_seq_number, 2, 100)
    assert _atoms(model.query(algebraic.query(algebraic.not_(in_range)))) == [
        [0, 1, 2, 3, 4, 17, 18]
    ]


def test_atoms_in_box(model) -> None:
    seq = model.query(atoms_in_box([0, -1, -1], {"x": 1, "y": 0, "z": 0}))

    assert _atoms(seq) == [[0, 1, 4]]
    assert _atoms(model.query(atoms_in_box([50, 50, 50], [60, 60, 60]))) == []


def test_or_keeps_duplicates(model) -> None:
    seq = model.query(or_(atoms_by_name("CA"), atoms_by_name("CA", "CB")))

    assert _atoms(seq) == [[1], [6], [10], [1], [4], [6], [10], [13]]


def test_complement(model) -> None:
    seq = model.query(complement(residues_by_name("ALA", "GLY", "SER")))

    assert _atoms(seq) == [[15, 16, 17, 18]]
    assert seq[0].tag == COMPLEMENT_TAG
    assert not seq[0].is_het


def test_complement_involution(model) -> None:
    source = or_(atoms_by_name("CA"), het_groups())
    twice = model.query(complement(complement(source)))

    assert _atoms(twice) == [model.query(union(source))[0].atom_indices.tolist()]


def test_complement_of_everything_is_empty(model) -> None:
    assert len(model.query(complement(everything()))) == 0
    assert len(model.query(union(complement(everything())))) == 0


def test_union(model) -> None:
    seq = model.query(union(atoms_by_name("CA")))

    assert _atoms(seq) == [[1, 6, 10]]
    assert seq[0].tag == 1


def test_whole_residues_deduplicates(model) -> None:
    seq = model.query(whole_residues(atoms_by_name("CA", "CB")))

    assert _atoms(seq) == [[0, 1, 2, 3, 4], [5, 6, 7, 8], list(range(9, 15))]


def test_whole_residues_of_single_atom(model) -> None:
    seq = model.query(whole_residues(atoms_from_indices([1])))

    assert _atoms(seq) == [[0, 1, 2, 3, 4]]


def test_whole_residues_is_idempotent(model) -> None:
    once = model.query(whole_residues(atoms_by_element("O")))
    twice = model.query(whole_residues(whole_residues(atoms_by_element("O"))))

    assert _atoms(once) == _atoms(twice)


def test_ambient_residues(model) -> None:
    seq = model.query(ambient_residues(atoms_by_element("FE"), 3.0))

    # SER CA sits exactly 3.0 from FE
    assert _atoms(seq) == [list(range(9, 17))]
    assert seq[0].tag == 9


def test_ambient_residues_one_fragment_per_input(model) -> None:
    seq = model.query(ambient_residues(atoms_by_name("CA", "FE"), 1.0))

    assert len(seq) == 4


def test_ambient_residues_zero_radius_matches_whole_residues(model) -> None:
    source = atoms_by_element("FE", "N")
    ambient = model.query(ambient_residues(source, 0))
    whole = model.query(whole_residues(source))

    assert {tuple(a) for a in _atoms(ambient)} == {tuple(a) for a in _atoms(whole)}


def test_ambient_residues_rejects_negative_radius() -> None:
    with pytest.raises(QueryError) as excinfo:
        ambient_residues(everything(), -1)
    assert excinfo.value.code == "invalid_radius"


@pytest.mark.parametrize("radius", [float("inf"), float("nan"), "3"])
def test_ambient_residues_rejects_non_finite_radius(radius) -> None:
    with pytest.raises(QueryError) as excinfo:
        everything().ambient_residues(radius)
    assert excinfo.value.code == "invalid_radius"


def test_inside(model) -> None:
    assert _atoms(model.query(inside(atoms_by_name("CA"), residues_by_name("GLY")))) == [[6]]
    assert _atoms(model.query(inside(residues_by_name("GLY"), atoms_by_name("CA")))) == []
    assert _atoms(model.query(inside(atoms_by_name("CA"), residues_by_name("XYZ")))) == []


def test_intersect_with(model) -> None:
    seq = model.query(intersect_with(residues_by_name("ALA", "GLY"), atoms_by_name("CA")))

    assert _atoms(seq) == [[1], [6]]


def test_intersect_with_deduplicates(model) -> None:
    seq = model.query(
        intersect_with(or_(residues_by_name("ALA"), residues_by_name("ALA")), everything())
    )

    assert _atoms(seq) == [[0, 1, 2, 3, 4]]


def test_flatten_runs_query_inside_each_fragment(model) -> None:
    seq = model.query(flatten(residues_by_name("SER", "GLY"), atoms_by_element("O")))

    assert _atoms(seq) == [[8], [12], [14]]
    assert all(fragment.context is seq.context for fragment in seq)


def test_flatten_with_callable_selector(model) -> None:
    seq = model.query(
        flatten(residues_by_name("HOH"), lambda fragment: fragment.find("everything()"))
    )

    assert _atoms(seq) == [[17], [18]]


def test_filter(model) -> None:
    seq = model.query(filter_(residues({}), lambda fragment: fragment.atom_count > 4))

    assert [fragment.tag for fragment in seq] == [0, 9]


def test_chaining_api(model) -> None:
    query = atoms_by_element("FE").ambient_residues(3).whole_residues().union()

    assert _atoms(model.query(query)) == [list(range(9, 17))]
    assert _atoms(model.query(residues({}).inside(chains_by_id("C")))) == [[17], [18]]


def test_queries_respect_context_mask(model) -> None:
    ctx = Context.of_atom_indices(model, [1, 2, 6, 15, 16])

    assert _atoms(everything().compile()(ctx)) == [[1, 2, 6, 15, 16]]
    assert _atoms(residues({}).compile()(ctx)) == [[1, 2], [6], [15, 16]]
    assert _atoms(whole_residues(atoms_by_name("CA")).compile()(ctx)) == [[1, 2], [6]]
    assert _atoms(complement(atoms_by_name("CA")).compile()(ctx)) == [[2, 15, 16]]
    assert _atoms(ambient_residues(atoms_by_name("FE"), 100).compile()(ctx)) == [
        [1, 2, 6, 15, 16]
    ]


def test_compiled_query_is_reusable_across_models(model) -> None:
    query = residues_by_name("HOH").union().compile()
    other = Context.of_atom_indices(model, [17])

    assert _atoms(query(model.query_context)) == [[17, 18]]
    assert _atoms(query(other)) == [[17]]


def test_query_text_source(model) -> None:
    seq = model.query('residuesByName("GLY").union()')

    assert _atoms(seq) == [[5, 6, 7, 8]]


def test_invalid_source(model) -> None:
    with pytest.raises(QueryError) as excinfo:
        model.query(42)
    assert excinfo.value.code == "invalid_source"


def test_invalid_schema_field() -> None:
    with pytest.raises(QueryError) as excinfo:
        residues({"colour": "red"})
    assert excinfo.value.code == "invalid_schema"
    with pytest.raises(QueryError):
        residues({"seq_number": "3"})
    with pytest.raises(QueryError):
        residues({"seq_number": 3, "seqNumber": 4})


def test_fragment_identity(model) -> None:
    seq = model.query(residues_by_name("GLY", "HEM"))
    gly, hem = seq

    assert gly.id == "test_5"
    assert gly.fingerprint == "GLY 2 A"
    assert not gly.is_het
    assert hem.is_het
    assert gly.residue_indices.tolist() == [1]
    assert hem.chain_indices.tolist() == [1]
    assert hem.entity_indices.tolist() == [1]
    assert np.array_equal(seq.union_atom_indices(), [5, 6, 7, 8, 15, 16])
