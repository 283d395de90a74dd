"""Command-line interface for scexplore."""

import json
import logging
import sys
from pathlib import Path

import click

from . import __version__, export, io, markers, utils


# Configure logging
def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _read_gene_list(path):
    with open(path) as f:
        return [line.strip() for line in f if line.strip() and not line.startswith("#")]


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose):
    """scexplore: marker tests and feature access for single-cell AnnData files."""
    setup_logging(verbose)


@main.command("markers")
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output-dir", "-o", type=click.Path(), required=True, help="Output directory")
@click.option("--name", default="markers", help="Output table name [default: markers]")
@click.option("--config", "config_file", type=click.Path(exists=True),
              help="JSON file with test parameters; command-line options override it")
@click.option("--ident-use", help="obs column defining the groups")
@click.option("--labels-a", multiple=True, help="Label pooled into group A (repeatable)")
@click.option("--labels-b", multiple=True, help="Label pooled into group B (repeatable) [default: all others]")
@click.option("--test-use", type=click.Choice(markers.parameters.TEST_METHODS), help="Test method")
@click.option("--rank-by", type=click.Choice(markers.parameters.RESULT_COLUMNS), help="Ranking column")
@click.option("--thresh-use", type=float, help="Minimum |avg_diff| to test a feature")
@click.option("--min-pct", type=float, help="Minimum detection rate to test a feature")
@click.option("--batch-key", help="obs column with batch labels [default: auto-detect]")
@click.option("--use-layer", help="Layer for gene values [default: X]")
@click.option("--genes", "genes_file", type=click.Path(exists=True),
              help="Text file with one candidate feature per line")
@click.option("--n-jobs", type=int, help="Worker processes for model fits")
def markers_cmd(
    input_file, output_dir, name, config_file, ident_use, labels_a, labels_b, test_use,
    rank_by, thresh_use, min_pct, batch_key, use_layer, genes_file, n_jobs,
):
    """
    Test which features differ between two groups of cells.

    INPUT_FILE: Path to H5AD file
    """
    logger = logging.getLogger(__name__)

    config = {}
    if config_file:
        with open(config_file) as f:
            config = json.load(f)
        logger.info(f"Loaded parameters from {config_file}")

    overrides = {
        "ident_use": ident_use,
        "labels_a": list(labels_a) or None,
        "labels_b": list(labels_b) or None,
        "test_use": test_use,
        "rank_by": rank_by,
        "thresh_use": thresh_use,
        "min_pct": min_pct,
        "batch_key": batch_key,
        "use_layer": use_layer,
        "genes_use": _read_gene_list(genes_file) if genes_file else None,
        "n_jobs": n_jobs,
    }
    config.update({k: v for k, v in overrides.items() if v is not None})
    params = markers.MarkerTestParameters.from_dict(config)

    adata = io.load_h5ad(input_file)

    try:
        result = markers.find_markers_with_parameters(adata, params)
    except markers.MarkerTestError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)

    table_path = export.export_markers(result, output_dir, name=name)
    manifest = export.create_manifest(
        adata, result, input_files=[input_file], parameters=params.to_dict()
    )
    manifest_path = Path(output_dir) / f"{Path(table_path).stem}_manifest.json"
    export.save_manifest(manifest, str(manifest_path))

    click.echo("\n=== Marker Test ===")
    click.echo(f"Groups: {result.attrs['label_a']} ({result.attrs['n_a']} cells) vs "
               f"{result.attrs['label_b']} ({result.attrs['n_b']} cells)")
    click.echo(f"Features reported: {len(result)}")
    click.echo(f"Failed fits: {result.attrs['n_failed']}")
    click.echo(f"Table: {table_path}")
    click.echo(f"Manifest: {manifest_path}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--group-col", help="obs column whose levels are counted")
@click.option("--output", "-o", type=click.Path(), help="Output JSON file")
def summarize(input_file, group_col, output):
    """
    Summarize a dataset and the test backends available for it.

    INPUT_FILE: Path to H5AD file
    """
    logger = logging.getLogger(__name__)

    adata = io.load_h5ad(input_file)
    summary = io.summarize_adata(adata, group_col=group_col)

    available, missing = utils.check_dependencies({"statsmodels": None, "scanpy": None})
    summary["backends"] = {"available": available, "missing": missing}

    output_file = output or str(Path(input_file).with_suffix("")) + "_summary.json"
    with open(output_file, "w") as f:
        json.dump(summary, f, indent=2, default=str)

    logger.info(f"Summary saved to {output_file}")
    click.echo(f"{summary['n_obs']} cells × {summary['n_vars']} features")
    if "batch_column" in summary:
        click.echo(f"Batch column: {summary['batch_column']}")
    for name in missing:
        click.echo(utils.get_install_hint(name))
    click.echo(f"Summary: {output_file}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("variables", nargs=-1, required=True)
@click.option("--output", "-o", type=click.Path(), required=True, help="Output CSV file")
@click.option("--use-layer", help="Layer for gene values [default: X]")
@click.option("--fill-na", is_flag=True, help="Fill missing metadata values before fetching")
def fetch(input_file, variables, output, use_layer, fill_na):
    """
    Write per-cell values of genes, metadata or embedding coordinates to CSV.

    INPUT_FILE: Path to H5AD file

    VARIABLES: Names to fetch, e.g. Nkx2-1 nCount_RNA UMAP_1
    """
    adata = io.load_h5ad(input_file)
    if fill_na:
        adata = io.fill_na(adata)

    table = io.fetch_data(adata, variables, use_layer=use_layer)
    table.to_csv(output, index_label="cell")

    missing = [v for v in variables if v not in io.available_variables(adata)]
    click.echo(f"Wrote {table.shape[0]} cells × {table.shape[1]} variables to {output}")
    if missing:
        click.echo(f"Zero-filled (not found): {', '.join(missing)}")


if __name__ == "__main__":
    main()
