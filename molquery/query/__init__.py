"""Query language: builders, compiled queries and their results."""

from molquery.query import algebraic
from molquery.query.builder import (
    Builder,
    ambient_residues,
    atoms_by_element,
    atoms_by_id,
    atoms_by_name,
    atoms_from_indices,
    atoms_in_box,
    backbone,
    build,
    cartoons,
    chains,
    chains_by_id,
    chains_from_indices,
    complement,
    entities,
    entities_from_indices,
    everything,
    filter_,
    flatten,
    het_groups,
    inside,
    intersect_with,
    non_het_polymer,
    not_entities,
    or_,
    parse,
    polymer_names,
    register_modifier,
    registered_modifiers,
    residues,
    residues_by_id,
    residues_by_name,
    residues_from_indices,
    sequence,
    sidechain,
    to_query,
    union,
    unregister_modifier,
    whole_residues,
)
from molquery.query.context import Context, Mask
from molquery.query.fragment import (
    COMPLEMENT_TAG,
    NO_TAG,
    Fragment,
    FragmentSeq,
    FragmentSeqBuilder,
    HashFragmentSeqBuilder,
)
from molquery.query.parser import format_builder, parse_builder
from molquery.query.schema import AsymIdSchema, EntityIdSchema, ResidueIdSchema

__all__ = [
    "COMPLEMENT_TAG",
    "NO_TAG",
    "AsymIdSchema",
    "Builder",
    "Context",
    "EntityIdSchema",
    "Fragment",
    "FragmentSeq",
    "FragmentSeqBuilder",
    "HashFragmentSeqBuilder",
    "Mask",
    "ResidueIdSchema",
    "algebraic",
    "ambient_residues",
    "atoms_by_element",
    "atoms_by_id",
    "atoms_by_name",
    "atoms_from_indices",
    "atoms_in_box",
    "backbone",
    "build",
    "cartoons",
    "chains",
    "chains_by_id",
    "chains_from_indices",
    "complement",
    "entities",
    "entities_from_indices",
    "everything",
    "filter_",
    "flatten",
    "format_builder",
    "het_groups",
    "inside",
    "intersect_with",
    "non_het_polymer",
    "not_entities",
    "or_",
    "parse",
    "parse_builder",
    "polymer_names",
    "register_modifier",
    "registered_modifiers",
    "residues",
    "residues_by_id",
    "residues_by_name",
    "residues_from_indices",
    "sequence",
    "sidechain",
    "to_query",
    "union",
    "unregister_modifier",
    "whole_residues",
]
