import threading
import time

import numpy as np
import pytest

from molquery.errors import QueryError
from molquery.query import (
    NO_TAG,
    Context,
    Fragment,
    FragmentSeq,
    FragmentSeqBuilder,
    HashFragmentSeqBuilder,
    Mask,
)


def test_mask_membership(model) -> None:
    mask = Mask.of_indices(model, [2, 4, 7])

    assert mask.size == 3
    assert not mask.is_complete
    assert mask.has(4)
    assert not mask.has(5)
    assert not mask.has(-1)
    assert mask.has_range(3, 5)
    assert not mask.has_range(5, 7)
    assert mask.indices().tolist() == [2, 4, 7]

    full = Mask.of_structure(model)
    assert full.is_complete
    assert full.has_all(np.array([0, 18]))
    assert not full.has_all(np.array([19]))


def test_mask_rejects_out_of_range_indices(model) -> None:
    with pytest.raises(QueryError) as excinfo:
        Mask.of_indices(model, [0, 19])
    assert excinfo.value.code == "invalid_index"


def test_context_tree_is_built_once(model) -> None:
    ctx = Context.of_atom_indices(model, [15, 16, 17])
    tree = ctx.tree

    assert ctx.tree is tree
    assert sorted(tree.data.tolist()) == [15, 16, 17]
    assert model.query_context is model.query_context
    assert model.query_context.atom_count == 19


def test_context_tree_is_built_once_under_concurrent_access(model, monkeypatch) -> None:
    ctx = Context.of_atom_indices(model, list(range(15)))
    build = Context._make_tree
    calls = []

    def slow_build(self):
        calls.append(self)
        time.sleep(0.05)
        return build(self)

    monkeypatch.setattr(Context, "_make_tree", slow_build)
    barrier = threading.Barrier(8)
    trees = []

    def read_tree() -> None:
        barrier.wait()
        trees.append(ctx.tree)

    threads = [threading.Thread(target=read_tree) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert len(trees) == 8
    assert all(tree is trees[0] for tree in trees)


def test_fragment_validation(model) -> None:
    ctx = model.query_context
    with pytest.raises(QueryError) as excinfo:
        Fragment(ctx, 0, [3, 1])
    assert excinfo.value.code == "invalid_fragment"
    with pytest.raises(QueryError):
        Fragment(ctx, 0, [1, 1])

    partial = Context.of_atom_indices(model, [1, 2])
    with pytest.raises(QueryError):
        Fragment(partial, 1, [1, 3])


def test_fragment_constructors(model) -> None:
    ctx = Context.of_atom_indices(model, [1, 2, 5, 6])

    assert Fragment.of_set(ctx, {6, 2, 1}).atom_indices.tolist() == [1, 2, 6]
    assert Fragment.of_set(ctx, {6, 2, 1}).tag == 1
    assert Fragment.of_set(ctx, set()).tag == NO_TAG
    assert Fragment.of_index(ctx, 5).atom_indices.tolist() == [5]
    assert Fragment.of_array(ctx, 7, np.array([2, 5])).tag == 7
    assert Fragment.of_array(ctx, 7, [2, 5]).atom_indices.tolist() == [2, 5]
    assert Fragment.of_index_range(ctx, 0, 5).atom_indices.tolist() == [1, 2]
    assert Fragment.of_index_range(ctx, 2, 6).tag == 2
    with pytest.raises(QueryError):
        Fragment.of_index_range(ctx, 3, 5)


def test_fragment_atoms_are_read_only(model) -> None:
    fragment = Fragment.of_index_range(model.query_context, 0, 5)

    with pytest.raises(ValueError):
        fragment.atom_indices[0] = 3


def test_fragment_equality_ignores_tag_and_context(model) -> None:
    a = Fragment(model.query_context, 0, [0, 1, 2])
    b = Fragment(Context.of_atom_indices(model, [0, 1, 2]), 7, [0, 1, 2])
    c = Fragment(model.query_context, 0, [0, 1, 3])

    assert a == b
    assert hash(a) == hash(b)
    assert a != c
    assert Fragment.are_equal(a, b)


def test_hash_collision_falls_back_to_atoms(model) -> None:
    ctx = model.query_context
    a = Fragment(ctx, 0, [0, 1])
    b = Fragment(ctx, 2, [2, 3])
    a._hash_code = 42
    b._hash_code = 42

    assert not Fragment.are_equal(a, b)

    c = Fragment(ctx, 9, [0, 1])
    c._hash_code = 42
    builder = HashFragmentSeqBuilder(ctx)
    builder.add(a).add(b).add(c)
    assert [f.atom_indices.tolist() for f in builder.get_seq()] == [[0, 1], [2, 3]]


def test_seq_builders(model) -> None:
    ctx = model.query_context
    plain = FragmentSeqBuilder(ctx)
    plain.add(Fragment.of_index(ctx, 3)).add(Fragment.of_index(ctx, 3))

    assert len(plain.get_seq()) == 2

    seq = plain.get_seq()
    assert seq.union_atom_indices().tolist() == [3]
    assert seq.union_fragment().tag == 3


def test_empty_seq(model) -> None:
    seq = FragmentSeq.empty(model.query_context)

    assert seq.length == 0
    assert seq.union_atom_indices().tolist() == []
    assert seq.union_fragment().tag == NO_TAG


def test_find_scopes_query_to_fragment(model) -> None:
    gly = Fragment.of_index_range(model.query_context, 5, 9)
    result = gly.find("atoms_by_name('CA', 'C')")

    assert [f.atom_indices.tolist() for f in result] == [[6], [7]]
    assert result.context.atom_count == 4


def test_auth_fingerprint(model) -> None:
    seq = model.query("residues_by_name('HOH').union()")

    assert seq[0].auth_fingerprint == "HOH 200 C,HOH 201 C"
