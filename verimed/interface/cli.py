"""
Command Line Interface for the VeriMed pipeline.
Provides commands for data collection, training, model management and scanning.
"""

import json
from pathlib import Path

import click
import torch

from ..data.records import IMAGE_MODALITIES, MODEL_TYPES, ContributorRole
from ..session import VeriMedSession
from ..utils import VeriMedError, PreprocessingError, get_config, setup_logging


MODALITY_CHOICES = [m.value for m in IMAGE_MODALITIES]
MODEL_TYPE_CHOICES = [m.value for m in MODEL_TYPES]


def _session(ctx) -> VeriMedSession:
    """Build the session on first use so that --help works without touching storage."""
    if 'session' not in ctx.obj:
        ctx.obj['session'] = VeriMedSession(config_manager=ctx.obj['config_manager'])
    return ctx.obj['session']


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), default=None,
              help='Configuration file path')
@click.option('--root', type=click.Path(), default=None,
              help='Storage root overriding paths.root_dir')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              default='INFO', help='Logging level')
@click.pass_context
def cli(ctx, config, root, log_level):
    """VeriMed counterfeit medicine detection CLI"""
    ctx.ensure_object(dict)

    overrides = {"paths": {"root_dir": str(root)}} if root else None
    try:
        config_manager = get_config(config, overrides=overrides)
    except VeriMedError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        raise click.Abort()

    setup_logging(
        config_path=config_manager.config_path,
        level=log_level,
        log_dir=config_manager.get("logging.log_dir")
    )
    ctx.obj['config_manager'] = config_manager


@cli.command()
@click.argument('image', type=click.Path(exists=True, dir_okay=False))
@click.option('--modality', '-m', type=click.Choice(MODALITY_CHOICES), required=True,
              help='What the photo shows')
@click.option('--authentic/--counterfeit', default=True, help='Authenticity label')
@click.option('--quality', '-q', type=click.IntRange(1, 10), required=True, help='Photo quality rating')
@click.option('--role', type=click.Choice([r.value for r in ContributorRole]),
              default=ContributorRole.PHARMACIST.value, help='Contributor role')
@click.option('--name', default='', help='Medicine name')
@click.option('--manufacturer', default='', help='Manufacturer')
@click.option('--batch-code', default='', help='Printed batch code')
@click.pass_context
def collect(ctx, image, modality, authentic, quality, role, name, manufacturer, batch_code):
    """Store a labeled training photo"""
    session = _session(ctx)
    try:
        assessment = session.preprocessor.assess_quality(image)
        for issue in assessment.issues:
            click.echo(f"Warning: {issue}")
        record = session.collect_medicine_image(
            image, name=name, manufacturer=manufacturer, batch_code=batch_code,
            is_authentic=authentic, modality=modality, quality=quality, contributor_role=role
        )
    except VeriMedError as e:
        click.echo(f"Collection failed: {e}", err=True)
        raise click.Abort()

    click.echo(f"Collected {record.id} -> {record.path}")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show collection statistics"""
    current = _session(ctx).get_stats()

    click.echo("=== Collection Statistics ===")
    click.echo(f"Total images: {current.total_images}")
    click.echo(f"Authentic: {current.authentic_images}")
    click.echo(f"Counterfeit: {current.counterfeit_images}")
    click.echo(f"Packaging: {current.packaging_images}")
    click.echo(f"Pill: {current.pill_images}")
    click.echo(f"Batch code: {current.batch_code_images}")
    click.echo(f"Average quality: {current.average_quality:.2f}")
    if current.last_updated:
        click.echo(f"Last updated: {current.last_updated.isoformat()}")


@cli.command()
@click.option('--output', '-o', type=click.Path(dir_okay=False), required=True,
              help='JSON file to write the export manifest to')
@click.pass_context
def export(ctx, output):
    """Export the collection manifest for training"""
    snapshot = _session(ctx).export_data_for_training()
    manifest = {
        "export_date": snapshot.export_date.isoformat(),
        "stats": snapshot.stats.to_dict(),
        "images": [image.to_dict() for image in snapshot.images],
    }
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, 'w') as f:
        json.dump(manifest, f, indent=2)
    click.echo(f"Exported {len(snapshot.images)} images to {output}")


@cli.command()
@click.option('--yes', is_flag=True, help='Confirm without prompting')
@click.pass_context
def clear(ctx, yes):
    """Delete all collected data"""
    if not yes and not click.confirm("Delete every collected image?"):
        click.echo("Aborted")
        return
    _session(ctx).clear_all_data(confirm=True)
    click.echo("All collected data cleared")


def _echo_result(result):
    metrics = result.metrics
    click.echo(
        f"{result.model_type.value}: {result.status.value} after {result.history.epochs_run} epochs | "
        f"accuracy {metrics.accuracy:.3f} | precision {metrics.precision:.3f} | "
        f"recall {metrics.recall:.3f} | F1 {metrics.f1_score:.3f} | ROC-AUC {metrics.roc_auc:.3f}"
    )


@cli.command()
@click.argument('model_type', type=click.Choice(MODEL_TYPE_CHOICES))
@click.option('--epochs', '-e', type=int, help='Number of training epochs')
@click.option('--batch-size', '-b', type=int, help='Batch size for training')
@click.option('--learning-rate', '-lr', type=float, help='Learning rate')
@click.option('--no-deploy', is_flag=True, help='Train without activating the result')
@click.pass_context
def train(ctx, model_type, epochs, batch_size, learning_rate, no_deploy):
    """Train one model type"""
    overrides = {"epochs": epochs, "batch_size": batch_size, "learning_rate": learning_rate}
    session = _session(ctx)
    click.echo(f"Training {model_type} on device: {session.device}")

    try:
        result = session.train_model(model_type, config=overrides, deploy=not no_deploy)
    except VeriMedError as e:
        click.echo(f"Training failed: {e}", err=True)
        raise click.Abort()

    _echo_result(result)
    click.echo(f"Artifact saved to: {result.artifact_path}")


@cli.command('train-all')
@click.option('--no-deploy', is_flag=True, help='Train without activating the results')
@click.pass_context
def train_all(ctx, no_deploy):
    """Train packaging, pill, batch_code and fusion in order"""
    try:
        results = _session(ctx).train_all_models(deploy=not no_deploy)
    except VeriMedError as e:
        click.echo(f"Training failed: {e}", err=True)
        raise click.Abort()

    for result in results:
        _echo_result(result)


@cli.command()
@click.option('--model-type', '-t', type=click.Choice(MODEL_TYPE_CHOICES), help='Filter by model type')
@click.pass_context
def versions(ctx, model_type):
    """List registered model versions"""
    listed = _session(ctx).get_model_versions(model_type)
    if not listed:
        click.echo("No model versions registered")
        return

    for version in listed:
        marker = "*" if version.is_active else " "
        click.echo(
            f"{marker} {version.model_type.value:<10} {version.version:<8} {version.id} "
            f"accuracy={version.accuracy:.3f} created={version.created_at.isoformat(timespec='seconds')}"
        )


@cli.command()
@click.argument('model_type', type=click.Choice(MODEL_TYPE_CHOICES))
@click.pass_context
def rollback(ctx, model_type):
    """Reactivate the previous version of a model type"""
    try:
        version = _session(ctx).rollback_model(model_type)
    except VeriMedError as e:
        click.echo(f"Rollback failed: {e}", err=True)
        raise click.Abort()
    click.echo(f"{model_type} rolled back to {version.version} ({version.id})")


@cli.command()
@click.option('--keep', '-k', type=click.IntRange(min=1), default=None, help='Versions to keep per model type')
@click.pass_context
def cleanup(ctx, keep):
    """Delete old model versions"""
    removed = _session(ctx).cleanup_old_models(keep)
    click.echo(f"Removed {len(removed)} old model versions")


@cli.command()
@click.option('--packaging', type=click.Path(exists=True, dir_okay=False), help='Packaging photo')
@click.option('--pill', type=click.Path(exists=True, dir_okay=False), help='Pill photo')
@click.option('--batch-code', type=click.Path(exists=True, dir_okay=False), help='Batch code photo')
@click.option('--name', default=None, help='Known medicine name')
@click.option('--manufacturer', default=None, help='Known manufacturer')
@click.option('--known-batch-code', default=None, help='Batch code printed on the box')
@click.option('--json-output', is_flag=True, help='Print the result as JSON')
@click.pass_context
def analyze(ctx, packaging, pill, batch_code, name, manufacturer, known_batch_code, json_output):
    """Scan medicine photos for counterfeit signs"""
    images = {
        modality: path
        for modality, path in (("packaging", packaging), ("pill", pill), ("batch_code", batch_code))
        if path
    }
    if not images:
        raise click.UsageError("Provide at least one of --packaging, --pill or --batch-code")

    session = _session(ctx)
    try:
        session.initialize()
        result = session.analyze_images(
            images, known_name=name, known_manufacturer=manufacturer, known_batch_code=known_batch_code
        )
    except PreprocessingError as e:
        click.echo(f"Analysis unavailable: {e}", err=True)
        raise click.Abort()
    except VeriMedError as e:
        click.echo(f"Analysis failed: {e}", err=True)
        raise click.Abort()
    session.close()

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    for line in result.reasoning:
        click.echo(line)
    click.echo(f"Processing time: {result.processing_time_ms:.0f}ms")
    for model_type, version in result.model_versions.items():
        click.echo(f"  {model_type}: {version}")


@cli.command()
@click.option('--model-type', '-t', type=click.Choice(MODEL_TYPE_CHOICES), help='Check one model type only')
@click.option('--iterations', '-n', type=click.IntRange(min=1), default=5, help='Timed scans in the speed check')
@click.pass_context
def diagnose(ctx, model_type, iterations):
    """Self-check the active models"""
    session = _session(ctx)
    session.initialize()
    report = session.run_diagnostics(model_type, iterations=iterations)

    for check in report.checks:
        mark = "PASS" if check.passed else "FAIL"
        click.echo(f"[{mark}] {check.name:<22} {check.details}")
    click.echo(
        f"Passed {report.passed_checks}/{report.total_checks} checks "
        f"({report.overall_score:.1f}%) in {report.duration_ms:.0f}ms"
    )


@cli.command()
@click.pass_context
def info(ctx):
    """Show system information"""
    session = _session(ctx)
    paths = session.paths
    session.initialize()

    click.echo("=== VeriMed System Information ===")
    click.echo(f"PyTorch version: {torch.__version__}")
    click.echo(f"CUDA available: {torch.cuda.is_available()}")
    if torch.cuda.is_available():
        click.echo(f"CUDA device: {torch.cuda.get_device_name()}")

    click.echo(f"\nData directory: {paths.data_dir}")
    click.echo(f"Models directory: {paths.models_dir}")
    click.echo(f"Artifacts directory: {paths.artifacts_dir}")

    click.echo(f"\nCollected images: {session.store.count()}")
    for model_type in MODEL_TYPES:
        version = session.registry.get_active_model_version(model_type)
        click.echo(f"Active {model_type.value} model: {version.version if version else 'none'}")


if __name__ == '__main__':
    cli()
