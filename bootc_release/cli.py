"""Thin CLI wrapper for bootc_release.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import dataclasses
import json
import logging
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler

from bootc_release import __version__
from bootc_release.config import Settings, get_settings, print_settings_json
from bootc_release.errors import ReleaseError

app = typer.Typer(
    name="bootc-release",
    help="bootc image release pipeline - build, sign, attest and convert OS images",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger("bootc_release")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"bootc-release version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through rich at the given level."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Log level (default from settings)"),
    ] = None,
) -> None:
    """bootc image release pipeline - build, sign, attest and convert OS images."""
    configure_logging(log_level or get_settings().log_level)


def _fail(error: ReleaseError) -> NoReturn:
    console.print(f"[red]Error: {error.message}[/red]", highlight=False)
    raise typer.Exit(code=1)


def _parse_pairs(values: list[str] | None, option: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep or not key:
            console.print(f"[red]Invalid {option} {value!r}, expected KEY=VALUE[/red]")
            raise typer.Exit(code=1)
        pairs[key] = val
    return pairs


def _load_project(path: Path | None):
    from bootc_release.project import load_from_project

    try:
        return load_from_project(path)
    except ReleaseError as e:
        _fail(e)


def _session_factory(settings: Settings):
    from bootc_release.db import open_history

    return open_history(settings.db_url)


ProjectOption = Annotated[
    Path | None,
    typer.Option("--project", "-C", help="Project directory (default: current)"),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


@app.command()
def config(json_output: JsonOption = False) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
        return
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Tools:[/bold]")
    console.print(f"  Container engine:    {settings.container_engine}")
    console.print(f"  Signer:              {settings.signer}")
    console.print(f"  SBOM scanner:        {settings.sbom_scanner}")
    console.print(f"  Disk builder image:  {settings.disk_builder_image}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Container storage:   {settings.container_storage}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Manifest name:       {settings.manifest_name}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Disk timeout:        {settings.disk_timeout}")
    console.print(f"  Command timeout:     {settings.command_timeout}")
    console.print()
    console.print(f"Log level: {settings.log_level}")


@app.command()
def validate(project_dir: ProjectOption = None) -> None:
    """Validate the project configuration."""
    from bootc_release.builds.service import Builder

    project, root = _load_project(project_dir)
    try:
        project.validate_required()
        containerfile = Builder(project, root).containerfile()
    except ReleaseError as e:
        _fail(e)
    console.print(f"[green]Configuration is valid[/green] ({project.name})")
    console.print(f"  Build file: {containerfile}")
    console.print(f"  Variants:   {', '.join(project.variant_names())}")


@app.command()
def build(
    variant: Annotated[str, typer.Option("--variant", "-v", help="Variant to build")] = "main",
    tag: Annotated[str, typer.Option("--tag", "-t", help="Image tag")] = "latest",
    build_number: Annotated[
        int, typer.Option("--build-number", "-n", help="Build number")
    ] = 0,
    no_cache: Annotated[bool, typer.Option("--no-cache", help="Disable layer cache")] = False,
    push: Annotated[bool, typer.Option("--push", help="Push after building")] = False,
    sign: Annotated[bool, typer.Option("--sign", help="Sign after pushing")] = False,
    sbom: Annotated[bool, typer.Option("--sbom", help="Generate an SBOM")] = False,
    rechunk: Annotated[bool, typer.Option("--rechunk", help="Request rechunking")] = False,
    lint: Annotated[bool, typer.Option("--lint", help="Run bootc container lint")] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show what would be built")
    ] = False,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Build timeout in seconds")
    ] = None,
    deadline_seconds: Annotated[
        float | None,
        typer.Option("--deadline", help="Time budget for the whole pipeline in seconds"),
    ] = None,
    build_args: Annotated[
        list[str] | None,
        typer.Option("--build-arg", help="Build argument KEY=VALUE (repeatable)"),
    ] = None,
    extra_tags: Annotated[
        list[str] | None,
        typer.Option("--extra-tag", help="Additional tag (repeatable)"),
    ] = None,
    key: Annotated[
        str | None, typer.Option("--key", help="Signing key (default: keyless)")
    ] = None,
    sbom_format: Annotated[
        str, typer.Option("--sbom-format", help="spdx-json, cyclonedx or json")
    ] = "spdx-json",
    manifest_path: Annotated[
        Path | None,
        typer.Option("--manifest", help="Manifest path (default: <root>/output/manifest.json)"),
    ] = None,
    log_dir: Annotated[
        Path | None,
        typer.Option("--log-dir", help="Write a session log of tool output here"),
    ] = None,
    project_dir: ProjectOption = None,
    json_output: JsonOption = False,
) -> None:
    """Build a container image and run the requested release stages."""
    from bootc_release.builds.history import complete_release, fail_release, start_release
    from bootc_release.builds.service import Builder, BuildOptions
    from bootc_release.db import get_session
    from bootc_release.executor import Deadline, session_log_path

    settings = get_settings()
    project, root = _load_project(project_dir)
    options = BuildOptions(
        variant=variant,
        tag=tag,
        build_number=build_number,
        no_cache=no_cache,
        push=push,
        sign=sign,
        sbom=sbom,
        rechunk=rechunk,
        lint=lint,
        dry_run=dry_run,
        timeout=timeout,
        extra_build_args=_parse_pairs(build_args, "--build-arg"),
        extra_tags=tuple(extra_tags or ()),
        sign_key=key,
        sbom_format=sbom_format,
        log_file=session_log_path(log_dir) if log_dir else None,
    )
    builder = Builder(project, root, settings=settings)
    deadline = Deadline(deadline_seconds)

    if dry_run:
        try:
            manifest = builder.build(options, deadline)
        except ReleaseError as e:
            _fail(e)
        if json_output:
            console.print_json(manifest.to_json())
        else:
            console.print(f"[yellow]DRY RUN[/yellow] {manifest.version.image_ref}")
            console.print(f"  Version: {manifest.version.version}")
        return

    manifest_file = manifest_path or root / "output" / settings.manifest_name
    factory = _session_factory(settings)
    with get_session(factory) as session:
        record = start_release(session, project.name, variant, tag, push=push, sign=sign)
        session.commit()
        try:
            manifest = builder.build(options, deadline)
            manifest.save(manifest_file)
        except ReleaseError as e:
            fail_release(session, record, e)
            session.commit()
            _fail(e)
        complete_release(session, record, manifest, manifest_file)

    if json_output:
        console.print_json(manifest.to_json())
        return
    console.print(f"[green]Built {manifest.version.image_ref}[/green]")
    console.print(f"  Version:  {manifest.version.version}")
    for image in manifest.images:
        console.print(f"  Digest:   {image.digest or '(unknown)'}")
    for signature in manifest.signatures:
        console.print(f"  Signed:   {signature}")
    if manifest.sbom is not None:
        console.print(f"  SBOM:     {manifest.sbom.location}")
    console.print(f"  Manifest: {manifest_file}")


@app.command()
def disk(
    image: Annotated[
        str | None,
        typer.Argument(help="Image reference (default: the project's main image)"),
    ] = None,
    output_type: Annotated[
        str, typer.Option("--type", "-t", help="Output type, e.g. qcow2, raw, iso")
    ] = "qcow2",
    output_dir: Annotated[
        Path | None, typer.Option("--output", "-o", help="Output directory")
    ] = None,
    config_file: Annotated[
        Path | None, typer.Option("--config", help="Disk config TOML file")
    ] = None,
    rootfs: Annotated[str, typer.Option("--rootfs", help="Root filesystem type")] = "ext4",
    privileged: Annotated[
        bool, typer.Option("--privileged/--no-privileged", help="Run privileged")
    ] = True,
    pull_newer: Annotated[
        bool, typer.Option("--pull-newer/--no-pull-newer", help="Refresh the tool image")
    ] = True,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Timeout in seconds")
    ] = None,
    strict: Annotated[
        bool, typer.Option("--strict", help="Fail when no artifact is found")
    ] = False,
    manifest_path: Annotated[
        Path | None,
        typer.Option(
            "--manifest",
            help="Release manifest recording the artifact (default: <root>/output/manifest.json)",
        ),
    ] = None,
    project_dir: ProjectOption = None,
) -> None:
    """Convert a container image into a bootable disk image."""
    from bootc_release.disk.service import DiskBuilder, DiskOptions
    from bootc_release.release.manifest import ReleaseManifest

    settings = get_settings()
    project, root = _load_project(project_dir)
    options = DiskOptions(
        image_ref=image or project.image_ref("main", "latest"),
        output_type=output_type,
        output_dir=output_dir,
        config_file=config_file,
        rootfs=rootfs,
        privileged=privileged,
        pull_newer=pull_newer,
        timeout=timeout,
        strict_output=strict,
    )
    try:
        path = DiskBuilder(project, root, settings=settings).build(options)
    except ReleaseError as e:
        _fail(e)
    console.print(f"[green]Disk image:[/green] {path}")

    # Only a manifest left by an earlier build is updated
    manifest_file = manifest_path or root / "output" / settings.manifest_name
    if manifest_file.is_file():
        try:
            manifest = ReleaseManifest.load(manifest_file)
            manifest.add_artifact(str(path))
            manifest.save(manifest_file)
        except ReleaseError as e:
            _fail(e)
        console.print(f"  Recorded in {manifest_file}")


@app.command("sign")
def sign_cmd(
    image: Annotated[str, typer.Argument(help="Image reference to sign")],
    key: Annotated[
        str | None, typer.Option("--key", help="Signing key (default: keyless)")
    ] = None,
    verify: Annotated[
        bool, typer.Option("--verify", help="Verify instead of signing")
    ] = False,
) -> None:
    """Sign or verify an image."""
    from bootc_release.builds.signing import Signer

    signer = Signer(settings=get_settings())
    try:
        if verify:
            signer.verify(image, key)
            console.print(f"[green]Signature verified:[/green] {image}")
        else:
            signature = signer.sign(image, key)
            console.print(f"[green]Signed:[/green] {signature}")
    except ReleaseError as e:
        _fail(e)


_PREDICATE_TYPES = {"spdx-json": "spdxjson", "cyclonedx": "cyclonedx", "json": "custom"}


@app.command("sbom")
def sbom_cmd(
    image: Annotated[str, typer.Argument(help="Image reference to scan")],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Output file")
    ] = None,
    sbom_format: Annotated[
        str, typer.Option("--format", "-f", help="spdx-json, cyclonedx or json")
    ] = "spdx-json",
    archive: Annotated[
        bool, typer.Option("--archive", help="Scan a saved archive of the local image")
    ] = False,
    attest: Annotated[
        bool, typer.Option("--attest", help="Attach the SBOM as an attestation")
    ] = False,
    project_dir: ProjectOption = None,
) -> None:
    """Generate an SBOM for an image."""
    from bootc_release.builds.sbom import SBOMGenerator, default_output_path
    from bootc_release.builds.signing import Signer
    from bootc_release.project import find_project_root

    settings = get_settings()
    try:
        path = output or default_output_path(find_project_root(project_dir), sbom_format)
        SBOMGenerator(settings=settings).generate(
            image, path, sbom_format, from_archive=archive
        )
        console.print(f"[green]SBOM written:[/green] {path}")
        if attest:
            Signer(settings=settings).attest(
                image, path, _PREDICATE_TYPES.get(sbom_format, "custom")
            )
            console.print(f"[green]Attested:[/green] {image}")
    except ReleaseError as e:
        _fail(e)


@app.command()
def lint(image: Annotated[str, typer.Argument(help="Image reference to lint")]) -> None:
    """Run bootc container lint inside an image."""
    from bootc_release.builds.service import Builder

    project, root = _load_project(None)
    try:
        Builder(project, root, settings=get_settings()).lint(image)
    except ReleaseError as e:
        _fail(e)
    console.print(f"[green]Lint passed:[/green] {image}")


@app.command()
def clean(
    images: Annotated[
        list[str] | None,
        typer.Argument(help="Images to remove (default: all local project images)"),
    ] = None,
    project_dir: ProjectOption = None,
) -> None:
    """Remove local project images."""
    from bootc_release.builds.service import Builder

    project, root = _load_project(project_dir)
    builder = Builder(project, root, settings=get_settings())
    try:
        targets = images or builder.list_local_images()
    except ReleaseError as e:
        _fail(e)
    if not targets:
        console.print("[yellow]No local images to remove[/yellow]")
        return
    removed = sum(1 for ref in targets if builder.clean(ref))
    console.print(f"Removed {removed} of {len(targets)} image(s)")


@app.command()
def status(project_dir: ProjectOption = None, json_output: JsonOption = False) -> None:
    """Show project, tool and local image status."""
    from bootc_release.builds.service import Builder

    project, root = _load_project(project_dir)
    info = Builder(project, root, settings=get_settings()).status()
    if json_output:
        console.print_json(json.dumps(info))
        return
    console.print(f"[bold]{info['project']}[/bold] ({info['root']})")
    available = "[green]yes[/green]" if info["engine_available"] else "[red]no[/red]"
    console.print(f"  Engine:   {info['engine']} (available: {available})")
    console.print(f"  Variants: {', '.join(info['variants'])}")
    if info["git_commit"]:
        dirty = " (dirty)" if info["git_dirty"] else ""
        console.print(f"  Git:      {info['git_branch']}@{info['git_commit']}{dirty}")
    for ref in info["local_images"]:
        console.print(f"  Image:    {ref}")


ci_app = typer.Typer(help="CI pipeline helpers")
app.add_typer(ci_app, name="ci")


def _ci_project(project, env):
    """Point the project's image reference at the CI registry and name."""
    registry = env.image_registry()
    host, _, namespace = registry.partition("/")
    update = {"registry": host, "repository": namespace or project.repository}
    if env.image_name_override or env.repository_name:
        update["name"] = env.image_name()
    return project.model_copy(update=update)


@ci_app.command("build")
def ci_build(
    variant: Annotated[str, typer.Option("--variant", "-v", help="Variant to build")] = "main",
    default_tag: Annotated[
        str, typer.Option("--default-tag", help="Floating tag for the default branch")
    ] = "stable",
    push: Annotated[
        bool | None,
        typer.Option("--push/--no-push", help="Force push on or off (default: auto)"),
    ] = None,
    sign: Annotated[bool, typer.Option("--sign", help="Sign pushed images")] = False,
    sbom: Annotated[bool, typer.Option("--sbom", help="Generate an SBOM")] = False,
    key: Annotated[
        str | None, typer.Option("--key", help="Signing key (default: keyless)")
    ] = None,
    description: Annotated[
        str, typer.Option("--description", help="Image description label")
    ] = "",
    keywords: Annotated[str, typer.Option("--keywords", help="Keywords label")] = "",
    logo_url: Annotated[str, typer.Option("--logo-url", help="Logo URL label")] = "",
    license_: Annotated[str, typer.Option("--license", help="License label")] = "",
    project_dir: ProjectOption = None,
) -> None:
    """Build, tag and optionally publish an image from a CI job."""
    from bootc_release.builds.service import Builder, BuildOptions
    from bootc_release.ci import outputs
    from bootc_release.ci.environment import LabelConfig, detect

    env = detect()
    project, root = _load_project(project_dir)
    project = _ci_project(project, env)

    tags = env.generate_tags(default_tag) or [default_tag]
    labels = env.generate_labels(
        project.image_name(variant),
        LabelConfig(
            description=description,
            keywords=keywords,
            logo_url=logo_url,
            license=license_,
        ),
    )
    should_push = push if push is not None else env.should_push()
    image_ref = project.image_ref(variant, tags[0])
    if should_push and image_ref.startswith("localhost/"):
        console.print(
            f"[red]Error: cannot push local image {image_ref}; "
            "set IMAGE_REGISTRY or the project repository[/red]",
            highlight=False,
        )
        raise typer.Exit(code=1)
    logger.info(
        "CI build: tags=%s push=%s (pull_request=%s default_branch=%s)",
        ",".join(tags),
        should_push,
        env.is_pull_request,
        env.is_default_branch,
    )

    options = BuildOptions(
        variant=variant,
        tag=tags[0],
        build_number=env.run_number,
        push=should_push,
        sign=sign and should_push,
        sbom=sbom,
        sign_key=key,
        extra_tags=tuple(tags[1:]),
        labels=labels,
    )
    builder = Builder(project, root, settings=get_settings())
    try:
        with outputs.group(f"Build {project.image_name(variant)}"):
            manifest = builder.build(options)
    except ReleaseError as e:
        outputs.log_error(e.message)
        _fail(e)

    digest = manifest.images[0].digest if manifest.images else ""
    outputs.set_output("image", image_ref)
    outputs.set_output("tags", "\n".join(tags))
    outputs.set_output("digest", digest)
    outputs.set_output("version", manifest.version.version)
    outputs.set_output("registry", env.image_registry())
    outputs.set_output("image_name", project.image_name(variant))
    outputs.add_summary(
        "\n".join(
            [
                f"### {project.image_name(variant)}",
                "",
                "| Field | Value |",
                "| --- | --- |",
                f"| Image | `{image_ref}` |",
                f"| Version | {manifest.version.version} |",
                f"| Tags | {', '.join(tags)} |",
                f"| Digest | `{digest or 'unknown'}` |",
                f"| Pushed | {'yes' if should_push else 'no'} |",
            ]
        )
    )
    console.print(f"[green]Built {image_ref}[/green]")


@ci_app.command("info")
def ci_info(json_output: JsonOption = False) -> None:
    """Show the detected CI environment."""
    from bootc_release.ci.environment import detect

    env = detect()
    data = dataclasses.asdict(env)
    data["registry"] = env.image_registry()
    data["image_name"] = env.image_name()
    data["should_push"] = env.should_push()
    if json_output:
        console.print_json(json.dumps(data))
        return
    for key_name, value in data.items():
        console.print(f"  {key_name}: {value}", highlight=False)


@ci_app.command("tags")
def ci_tags(
    default_tag: Annotated[
        str, typer.Option("--default-tag", help="Floating tag for the default branch")
    ] = "stable",
) -> None:
    """Print the tags the current environment would produce."""
    from bootc_release.ci.environment import detect

    for tag in detect().generate_tags(default_tag) or [default_tag]:
        typer.echo(tag)


manifest_app = typer.Typer(help="Inspect release manifests")
app.add_typer(manifest_app, name="manifest")


@manifest_app.command("show")
def manifest_show(
    path: Annotated[Path, typer.Argument(help="Manifest file")],
    json_output: JsonOption = False,
) -> None:
    """Show a release manifest."""
    from bootc_release.release.manifest import ReleaseManifest

    try:
        manifest = ReleaseManifest.load(path)
    except ReleaseError as e:
        _fail(e)
    if json_output:
        console.print_json(manifest.to_json())
        return
    console.print(f"[bold]{manifest.project}[/bold] {manifest.version.version}")
    console.print(f"  Generated: {manifest.generated_at.isoformat()}")
    console.print(f"  Schema:    {manifest.schema_version}")
    for image in manifest.images:
        console.print(
            f"  Image:     {image.name}:{image.tag} ({image.variant}) "
            f"{image.digest or '(no digest)'}"
        )
    for signature in manifest.signatures:
        console.print(f"  Signature: {signature}")
    if manifest.sbom is not None:
        console.print(f"  SBOM:      {manifest.sbom.location} ({manifest.sbom.format})")


releases_app = typer.Typer(help="Release history")
app.add_typer(releases_app, name="releases")


@releases_app.command("list")
def releases_list(
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Filter by project")
    ] = None,
    status_filter: Annotated[
        str | None, typer.Option("--status", "-s", help="Filter by status")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum results")] = 20,
    json_output: JsonOption = False,
) -> None:
    """List recorded release runs."""
    from bootc_release.builds.history import list_releases
    from bootc_release.types import ReleaseStatus

    status_value: ReleaseStatus | None = None
    if status_filter is not None:
        try:
            status_value = ReleaseStatus(status_filter)
        except ValueError:
            console.print(f"[red]Invalid status: {status_filter}[/red]")
            console.print("Valid values: pending, running, succeeded, failed")
            raise typer.Exit(code=1) from None

    factory = _session_factory(get_settings())
    with factory() as session:
        records = list_releases(session, project=project, status=status_value, limit=limit)
        if json_output:
            output = [
                {
                    "id": r.id,
                    "project": r.project,
                    "variant": r.variant,
                    "tag": r.tag,
                    "version": r.version,
                    "image_ref": r.image_ref,
                    "digest": r.digest,
                    "status": r.status,
                    "error_type": r.error_type,
                    "error_message": r.error_message,
                }
                for r in records
            ]
            console.print_json(json.dumps(output))
            return
        if not records:
            console.print("[yellow]No releases found[/yellow]")
            return
        console.print(f"[bold]Found {len(records)} release(s):[/bold]")
        for r in records:
            color = "green" if r.is_succeeded() else "red"
            console.print(
                f"  #{r.id} {r.project}:{r.tag} [{color}]{r.status}[/{color}] "
                f"{r.version or ''}"
            )


vm_app = typer.Typer(help="Boot disk images for testing")
app.add_typer(vm_app, name="vm")


@vm_app.command("run")
def vm_run(
    image: Annotated[
        Path | None,
        typer.Argument(help="Disk image (default: newest under <root>/output)"),
    ] = None,
    memory: Annotated[str, typer.Option("--memory", "-m", help="Guest memory")] = "4G",
    cpus: Annotated[int, typer.Option("--cpus", help="Virtual CPUs")] = 2,
    display: Annotated[
        str, typer.Option("--display", help="gtk, sdl, vnc or none")
    ] = "gtk",
    ssh: Annotated[bool, typer.Option("--ssh/--no-ssh", help="Forward SSH")] = True,
    ssh_port: Annotated[int, typer.Option("--ssh-port", help="Host SSH port")] = 2222,
    kvm: Annotated[bool, typer.Option("--kvm/--no-kvm", help="Use KVM")] = True,
    uefi: Annotated[bool, typer.Option("--uefi/--no-uefi", help="Boot with UEFI")] = True,
    project_dir: ProjectOption = None,
) -> None:
    """Boot a disk image in QEMU."""
    from bootc_release.disk.vm import VMOptions, VMRunner, find_disk_image
    from bootc_release.project import find_project_root

    try:
        path = image or find_disk_image(find_project_root(project_dir) / "output")
        VMRunner().run(
            VMOptions(
                image_path=path,
                memory=memory,
                cpus=cpus,
                display=display,
                ssh=ssh,
                ssh_port=ssh_port,
                kvm=kvm,
                uefi=uefi,
            )
        )
    except ReleaseError as e:
        _fail(e)


if __name__ == "__main__":
    app()
