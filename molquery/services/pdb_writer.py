"""PDB formatting utilities."""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from molquery.errors import PdbWriterError
from molquery.model.structure import MoleculeModel


def _format_atom_name(name: str) -> str:
    name = (name or "").strip()
    if len(name) > 4:
        return name[:4]
    if len(name) < 4:
        return f" {name}".ljust(4)
    return name


def _format_resname(resname: str) -> str:
    resname = (resname or "").strip()
    if len(resname) > 3:
        return resname[:3]
    return resname.rjust(3)


def _format_element(element: str) -> str:
    element = (element or "").strip()
    if not element:
        return "  "
    if len(element) == 1:
        return f" {element.upper()}"
    return element[0].upper() + element[1].lower()


def write_pdb(model: MoleculeModel, atom_indices: Optional[Sequence[int]] = None) -> str:
    """Build a PDB text block for atoms of a model.

    Parameters
    ----------
    model
        Model to format.
    atom_indices
        Atom indices to write, in output order. Defaults to every atom.

    Returns
    -------
    str
        PDB text ending in a newline.

    Raises
    ------
    PdbWriterError
        If an index is outside the model.
    """

    atoms = model.atoms
    residues = model.residues
    if atom_indices is None:
        indices = np.arange(atoms.count)
    else:
        indices = np.asarray(atom_indices, dtype=np.int64)
        if indices.size and (indices.min() < 0 or indices.max() >= atoms.count):
            raise PdbWriterError(
                "pdb_format_failed", "Atom index out of range", {"atom_count": atoms.count}
            )

    lines: List[str] = []
    for i in indices:
        r = atoms.residue_index[i]
        record = "HETATM" if residues.is_het[r] else "ATOM  "
        serial = int(atoms.id[i]) % 100000
        resid = int(residues.auth_seq_number[r]) % 10000
        chain = (str(residues.auth_asym_id[r]) or " ")[:1]
        icode = (str(residues.ins_code[r]) or " ")[:1]
        line = (
            f"{record}"
            f"{serial:5d} "
            f"{_format_atom_name(str(atoms.name[i]))}"
            f" "
            f"{_format_resname(str(residues.auth_name[r]))} "
            f"{chain}"
            f"{resid:4d}"
            f"{icode}   "
            f"{atoms.x[i]:8.3f}{atoms.y[i]:8.3f}{atoms.z[i]:8.3f}"
            f"{1.0:6.2f}{0.0:6.2f}"
            f"          "
            f"{_format_element(str(atoms.element_symbol[i])):>2}"
        )
        lines.append(line)
    lines.append("END")
    return "\n".join(lines) + "\n"
