"""molquery application entrypoint."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from molquery import config
from molquery.errors import MolQueryError
from molquery.logging_config import configure_logging
from molquery.model import Model

logger = logging.getLogger(__name__)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=config.APP_NAME, description="Select atoms of a molecular structure with a query"
    )
    parser.add_argument("topology_path", help="Path to a structure or topology file")
    parser.add_argument("coordinates_path", nargs="?", help="Optional coordinate file")
    parser.add_argument(
        "-q",
        "--query",
        dest="query",
        required=True,
        help='Query text, e.g. \'atoms_by_element("FE").ambient_residues(5)\'',
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=config.OUTPUT_FORMATS,
        default=config.DEFAULT_OUTPUT_FORMAT,
        help="Output format for the selection",
    )
    parser.add_argument(
        "--log-file",
        dest="log_file",
        default=None,
        help="Write logs to this file instead of stderr",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=config.DEFAULT_LOG_LEVEL,
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level",
    )
    return parser.parse_args(argv[1:])


def run(
    topology_path: str,
    query: str,
    coordinates_path: Optional[str] = None,
    output_format: str = config.DEFAULT_OUTPUT_FORMAT,
) -> str:
    """Load a structure, evaluate a query and format the selection.

    Parameters
    ----------
    topology_path
        Structure or topology file.
    query
        Query text.
    coordinates_path
        Optional coordinate file.
    output_format
        One of ``indices``, ``json`` or ``pdb``.

    Returns
    -------
    str
        Formatted selection.

    Raises
    ------
    MolQueryError
        If loading, parsing or evaluation fails.
    """

    model = Model()
    model.load_system(topology_path, coordinates_path)
    if output_format == "pdb":
        return str(model.get_selection_pdb(query)["pdb"])
    result: Dict[str, object] = model.select(query)
    if output_format == "json":
        return json.dumps(result)
    return " ".join(str(i) for i in result["atom_indices"])


def main(argv: Optional[List[str]] = None) -> int:
    """Run the molquery command line.

    Returns
    -------
    int
        Process exit code.
    """

    args = _parse_args(sys.argv if argv is None else argv)
    configure_logging(args.log_file, level=getattr(logging, args.log_level))
    logger.debug("Starting application")
    try:
        output = run(
            args.topology_path,
            args.query,
            coordinates_path=args.coordinates_path,
            output_format=args.output_format,
        )
    except MolQueryError as exc:
        logger.debug("Command failed: %s", exc.code)
        print(json.dumps(exc.to_result()), file=sys.stderr)
        return 1
    print(output.rstrip("\n"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
