import json
import click

from .db import init_db, connect_db
from .exceptions import JobctlError
from .job import BackgroundJob, create_background_job
from .models import JOB_STATUSES, JOB_STATUS_FAILED, JobFailure
from .repository import (
    SQLiteJobRegistry, SQLiteMetadataStore, list_jobs, counts,
    get_config, set_config
)
from .utils import lock_age, now_epoch, parse_delay_to_seconds


@click.group(help="jobctl — background job bookkeeping CLI")
def cli():
    # Ensure DB/schema exist before any command runs
    init_db()


def _parse_json_object(value, param_name):
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON ({e})", param_hint=param_name)
    if not isinstance(parsed, dict):
        raise click.BadParameter("must be a JSON object", param_hint=param_name)
    return parsed


def _load_job(conn, job_id):
    if not SQLiteJobRegistry(conn).exists(job_id):
        raise click.ClickException(f"Job {job_id} not found.")
    return BackgroundJob.load(SQLiteMetadataStore(conn), job_id)


# ---------- Create ----------
@cli.command("create", help="Create a new background job")
@click.argument("name")
@click.option("--data", "data_json", default=None, help="Job payload as a JSON object")
def create_cmd(name, data_json):
    data = _parse_json_object(data_json, "--data")
    conn = connect_db()
    try:
        job = create_background_job(
            SQLiteMetadataStore(conn), SQLiteJobRegistry(conn), name, data
        )
        click.secho(f"Created job {job.get_id()} ({name})", fg="green")
    except (ValueError, JobctlError) as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


# ---------- Jobs ----------
@cli.command("show")
@click.argument("job_id", type=int)
def show_cmd(job_id):
    conn = connect_db()
    try:
        job = _load_job(conn, job_id)
        click.echo(json.dumps(job.to_record().to_dict(), indent=2))
    except JobctlError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


@cli.command("list")
@click.option("--status", type=click.Choice(JOB_STATUSES), default=None)
@click.option("--stale-after", "stale_after", default=None,
              help="Flag locks older than this, e.g. 30s, 5m, 1h (default: stale_lock_seconds config)")
def list_cmd(status, stale_after):
    conn = connect_db()
    try:
        if stale_after:
            stale_seconds = parse_delay_to_seconds(stale_after)
        else:
            stale_seconds = int(get_config(conn).get("stale_lock_seconds", "300"))
        records = list_jobs(conn, status=status)
    except (ValueError, JobctlError) as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()

    if not records:
        click.echo("No jobs.")
        return

    now = now_epoch()
    for rec in records:
        if rec.lock_time is None:
            lock = "unlocked"
        else:
            age = lock_age(rec.lock_time, now)
            lock = f"locked {age}s ago" + (" (stale)" if age > stale_seconds else "")
        click.echo(
            f"{rec.id:>6} | {rec.status:<22} | attempts={rec.attempts} "
            f"| {lock} | name={rec.name} | errors={json.dumps(rec.errors)}"
        )


@cli.command("status")
def status_cmd():
    conn = connect_db()
    try:
        click.echo(json.dumps(counts(conn), indent=2))
    except JobctlError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


# ---------- Locking ----------
@cli.command("lock", help="Mark a job as in-flight")
@click.argument("job_id", type=int)
@click.option("--at", "timestamp", type=int, default=None, help="Epoch seconds (default: now)")
def lock_cmd(job_id, timestamp):
    conn = connect_db()
    try:
        job = _load_job(conn, job_id)
        started = job.get_start_time()
        if started is not None:
            click.secho(f"Job {job_id} was already locked at {started}; overwriting.", fg="yellow")
        ts = timestamp if timestamp is not None else now_epoch()
        job.lock(ts)
        click.secho(f"Locked job {job_id} at {ts}.", fg="green")
    except JobctlError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


@cli.command("unlock")
@click.argument("job_id", type=int)
def unlock_cmd(job_id):
    conn = connect_db()
    try:
        _load_job(conn, job_id).unlock()
        click.secho(f"Unlocked job {job_id}.", fg="green")
    except JobctlError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


# ---------- Status / errors ----------
@cli.command("set-status")
@click.argument("job_id", type=int)
@click.argument("status")
def set_status_cmd(job_id, status):
    conn = connect_db()
    try:
        job = _load_job(conn, job_id)
        if not job.set_status(status):
            click.secho(
                f"Error: invalid status {status!r}. Allowed: {', '.join(JOB_STATUSES)}",
                fg="red",
            )
            raise SystemExit(1)
        click.secho(f"Job {job_id} -> {status}", fg="green")
    except JobctlError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


@cli.command("fail", help="Record a failed attempt for a job")
@click.argument("job_id", type=int)
@click.option("--kind", required=True, help="Error kind/code")
@click.option("--details", "details_json", default=None, help="Error details as a JSON object")
def fail_cmd(job_id, kind, details_json):
    details = _parse_json_object(details_json, "--details")
    conn = connect_db()
    try:
        job = _load_job(conn, job_id)
        max_attempts = int(get_config(conn).get("max_attempts", "3"))
        job.set_error(JobFailure(kind=kind, details=details))
        attempts = job.get_attempts()
        if attempts >= max_attempts:
            job.set_status(JOB_STATUS_FAILED)
            click.secho(
                f"Job {job_id} failed ({kind}); attempts={attempts}/{max_attempts}, marked failed.",
                fg="red",
            )
        else:
            click.secho(
                f"Job {job_id} failed ({kind}); attempts={attempts}/{max_attempts}.",
                fg="yellow",
            )
    except JobctlError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


@cli.command("delete")
@click.argument("job_id", type=int)
def delete_cmd(job_id):
    conn = connect_db()
    try:
        if SQLiteJobRegistry(conn).delete(job_id):
            click.secho(f"Deleted job {job_id}.", fg="green")
        else:
            raise click.ClickException(f"Job {job_id} not found.")
    except JobctlError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
def config_get():
    conn = connect_db()
    try:
        click.echo(json.dumps(get_config(conn), indent=2))
    finally:
        conn.close()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set_cmd(key, value):
    conn = connect_db()
    try:
        set_config(conn, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


def main():
    cli()
