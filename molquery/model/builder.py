"""Build model tables from flat per-atom records."""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from molquery.errors import ModelError
from molquery.model.state import AtomRecord
from molquery.model.structure import MoleculeModel
from molquery.model.tables import AtomTable, ChainTable, EntityTable, ResidueTable

logger = logging.getLogger(__name__)


def _new_columns(table: type) -> Dict[str, List[object]]:
    return {name: [] for name in table.__dataclass_fields__}


def _ends(starts: List[int], total: int) -> List[int]:
    # rows are contiguous, so each row ends where the next one starts
    return starts[1:] + [total] if starts else []


def build_model(
    records: Sequence[AtomRecord], model_id: str = "1", id: str = "model"
) -> MoleculeModel:
    """Build a :class:`MoleculeModel` from atoms listed in model order.

    A new residue row starts whenever the residue identity changes between
    consecutive atoms, a new chain row whenever the entity or asym id changes
    and a new entity row whenever the entity id changes.

    Parameters
    ----------
    records
        Atom records in model order.
    model_id
        Model identifier (e.g. the model number of the source file).
    id
        Molecule identifier used in fragment ids.

    Returns
    -------
    MoleculeModel
        Model with atom, residue, chain and entity tables.

    Raises
    ------
    ModelError
        If an entity id reappears after a different entity.
    """

    atoms = _new_columns(AtomTable)
    residues = _new_columns(ResidueTable)
    chains = _new_columns(ChainTable)
    entities = _new_columns(EntityTable)

    seen_entities = set()
    residue_key = chain_key = entity_key = None
    for atom_index, record in enumerate(records):
        residue = record.residue
        if residue.entity_id != entity_key:
            if residue.entity_id in seen_entities:
                raise ModelError(
                    "invalid_input",
                    f"Entity '{residue.entity_id}' is not contiguous",
                    {"atom_index": atom_index},
                )
            seen_entities.add(residue.entity_id)
            entity_key = residue.entity_id
            chain_key = residue_key = None
            entities["entity_id"].append(residue.entity_id)
            entities["entity_type"].append(int(residue.entity_type))
            entities["type"].append(residue.entity_type.label)
            entities["atom_start_index"].append(atom_index)
            entities["residue_start_index"].append(len(residues["name"]))
            entities["chain_start_index"].append(len(chains["asym_id"]))

        if (residue.entity_id, residue.asym_id) != chain_key:
            chain_key = (residue.entity_id, residue.asym_id)
            residue_key = None
            chains["asym_id"].append(residue.asym_id)
            chains["auth_asym_id"].append(
                residue.auth_asym_id if residue.auth_asym_id is not None else residue.asym_id
            )
            chains["entity_id"].append(residue.entity_id)
            chains["entity_index"].append(len(entities["entity_id"]) - 1)
            chains["atom_start_index"].append(atom_index)
            chains["residue_start_index"].append(len(residues["name"]))

        if residue.key != residue_key:
            residue_key = residue.key
            residues["name"].append(residue.name)
            residues["seq_number"].append(residue.seq_number)
            residues["asym_id"].append(residue.asym_id)
            residues["auth_name"].append(
                residue.auth_name if residue.auth_name is not None else residue.name
            )
            residues["auth_seq_number"].append(
                residue.auth_seq_number
                if residue.auth_seq_number is not None
                else residue.seq_number
            )
            residues["auth_asym_id"].append(
                residue.auth_asym_id if residue.auth_asym_id is not None else residue.asym_id
            )
            residues["ins_code"].append(residue.ins_code or "")
            residues["entity_id"].append(residue.entity_id)
            residues["is_het"].append(1 if residue.is_het else 0)
            residues["atom_start_index"].append(atom_index)
            residues["chain_index"].append(len(chains["asym_id"]) - 1)
            residues["entity_index"].append(len(entities["entity_id"]) - 1)

        atoms["id"].append(record.id)
        atoms["name"].append(record.name)
        atoms["auth_name"].append(record.auth_name if record.auth_name is not None else record.name)
        atoms["element_symbol"].append(record.element or "")
        atoms["x"].append(record.coords[0])
        atoms["y"].append(record.coords[1])
        atoms["z"].append(record.coords[2])
        atoms["residue_index"].append(len(residues["name"]) - 1)
        atoms["chain_index"].append(len(chains["asym_id"]) - 1)
        atoms["entity_index"].append(len(entities["entity_id"]) - 1)

    atom_count = len(atoms["id"])
    residue_count = len(residues["name"])
    chain_count = len(chains["asym_id"])
    residues["atom_end_index"] = _ends(residues["atom_start_index"], atom_count)
    chains["atom_end_index"] = _ends(chains["atom_start_index"], atom_count)
    chains["residue_end_index"] = _ends(chains["residue_start_index"], residue_count)
    entities["atom_end_index"] = _ends(entities["atom_start_index"], atom_count)
    entities["residue_end_index"] = _ends(entities["residue_start_index"], residue_count)
    entities["chain_end_index"] = _ends(entities["chain_start_index"], chain_count)

    model = MoleculeModel(
        id=id,
        model_id=model_id,
        atoms=AtomTable(**atoms),
        residues=ResidueTable(**residues),
        chains=ChainTable(**chains),
        entities=EntityTable(**entities),
    )
    logger.debug(
        "Built model %s: atoms=%d residues=%d chains=%d entities=%d",
        id,
        model.atoms.count,
        model.residues.count,
        model.chains.count,
        model.entities.count,
    )
    return model
