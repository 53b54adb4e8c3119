"""
launcher.py
-----------
A CLI to manage the laoda daemon (start, stop, status, kill).

Uses subprocess to start the daemon in the background and finds the running
daemon with psutil, so no PID file is needed. Every command prints one JSON
line.
"""

import json
import os
import signal
import subprocess
import sys
import time

import httpx
import psutil
import typer

from common.app_setup import monkeypatch_print, print_and_log, print_error, setup_logging

DAEMON_MODULE = "laoda_server.daemon"

app = typer.Typer(add_completion=False, help="Manage the laoda daemon. If no command is given, status is shown.")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    if ctx.invoked_subcommand is None:
        try:
            ctx.invoke(status)
        finally:
            print("[bold yellow]Tip:[/bold yellow] Use [green]--help[/green] to see all available commands.")


def _start_daemon(port=None, config=None):
    """Start the daemon in the background. Returns (pid, port)."""
    cmd = [sys.executable, "-m", DAEMON_MODULE]
    if port is not None:
        cmd += ["--port", str(port)]
    if config is not None:
        cmd += ["--config", str(config)]
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, text=True, close_fds=True,
                            start_new_session=True)
    selected_port = None
    assert proc.stdout is not None
    for _ in range(10):
        line = proc.stdout.readline()
        if not line:
            break
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            continue
        if msg.get("event") in ("port_selected", "port_used"):
            selected_port = int(msg["port"])
            break
    time.sleep(0.5)
    if proc.poll() is not None:
        print_error(f"Failed to start daemon. Process exited with code {proc.returncode}.")
        raise typer.Exit(1)
    return proc.pid, selected_port or port


@app.command()
def start(
    port: int | None = typer.Option(None, help="Port for the daemon (0 = automatic, default from config)"),
    config: str | None = typer.Option(None, help="Configuration file passed to the daemon"),
):
    """Start the laoda daemon as a background process.
    If it is already running, report it and exit with code 1.
    """
    try:
        daemon_pid = _find_daemon_pid()
    except psutil.NoSuchProcess:
        pid, used_port = _start_daemon(port, config)
        print(json.dumps({"returncode": 0, "msg": "Started daemon", "pid": pid, "port": used_port}))
        return
    running_port = _get_listening_port_of_pid(daemon_pid)
    print(json.dumps({"returncode": 1, "msg": "A laoda daemon is already running",
                      "pid": daemon_pid, "port": running_port or "unknown"}))
    raise typer.Exit(1)


@app.command()
def stop():
    """Stop the daemon: /shutdown first, SIGTERM if it does not exit."""
    try:
        pid = _find_daemon_pid()
    except psutil.NoSuchProcess:
        print_and_log(json.dumps({"returncode": 1, "msg": "Daemon not running."}))
        raise typer.Exit(1)
    port = _get_listening_port_of_pid(pid)
    if port:
        try:
            httpx.post(f"http://127.0.0.1:{port}/shutdown", timeout=2)
        except httpx.HTTPError as exc:
            logger.warning(f"/shutdown failed: {exc}")
    if _wait_for_exit(pid, 2):
        print_and_log(json.dumps({"returncode": 0, "msg": f"Stopped daemon (PID {pid}) via /shutdown"}))
        return
    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as exc:
        logger.warning(f"SIGTERM to {pid} failed: {exc}")
    if _wait_for_exit(pid, 1):
        print_and_log(json.dumps({"returncode": 0, "msg": f"Stopped daemon (PID {pid}) via SIGTERM"}))
        return
    print_and_log(json.dumps({"returncode": 1, "msg": f"Failed to stop daemon (PID {pid})"}))
    raise typer.Exit(1)


@app.command()
def kill():
    """Forcefully kill the laoda daemon."""
    try:
        pid = _find_daemon_pid()
    except psutil.NoSuchProcess:
        print_and_log(json.dumps({"returncode": 1, "msg": "Daemon not running."}))
        raise typer.Exit(1)
    os.kill(pid, signal.SIGKILL)
    if _wait_for_exit(pid, 1):
        print_and_log(json.dumps({"returncode": 0, "msg": f"Killed daemon with PID {pid}"}))
    else:
        print_and_log(json.dumps({"returncode": 1, "msg": f"Failed to kill daemon with PID {pid}."}))
        raise typer.Exit(1)


@app.command()
def status():
    """Show whether the daemon is running and what its REST API reports."""
    result = {
        "returncode": 1,
        "msg": "Daemon not running.",
        "running": False,
        "pid": None,
        "port": None,
        "api_status": None,
    }
    try:
        pid = _find_daemon_pid()
        port = _get_listening_port_of_pid(pid) or "unknown"
        result["pid"] = pid
        result["port"] = port
        resp = httpx.get(f"http://127.0.0.1:{port}/status", timeout=2)
        if resp.status_code == 200:
            result["api_status"] = resp.json()
            result["msg"] = f"Daemon running with PID {pid}"
            result["running"] = True
            result["returncode"] = 0
        else:
            result["api_status"] = {"error": resp.text}
            result["msg"] = f"Daemon running with PID {pid}, but REST API error"
    except psutil.NoSuchProcess:
        pass
    except httpx.HTTPError as e:
        result["msg"] = f"Error checking daemon status: {e}"
        result["api_status"] = {"error": str(e)}
    print_and_log(json.dumps(result))


@app.command()
def show_logs():
    """Show live logs from syslog filtered by 'laoda'."""
    subprocess.run("tail -f /var/log/syslog | grep --line-buffered 'laoda'", shell=True)


def _pid_running(pid):
    try:
        proc = psutil.Process(pid)
        return proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def _wait_for_exit(pid, seconds):
    deadline = time.monotonic() + seconds
    while time.monotonic() < deadline:
        if not _pid_running(pid):
            return True
        time.sleep(0.1)
    return not _pid_running(pid)


def _find_daemon_pid():
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            if proc.info["cmdline"] and DAEMON_MODULE in " ".join(proc.info["cmdline"]):
                return proc.pid
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    logger.debug("Daemon not running.")
    raise psutil.NoSuchProcess(0, msg="Daemon not running.")


def _get_listening_port_of_pid(pid: int | None) -> int | None:
    try:
        proc = psutil.Process(pid)
        for c in proc.net_connections(kind="inet"):
            if c.status == psutil.CONN_LISTEN:
                return c.laddr.port
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass
    return None


# Assign logger globally
logger = setup_logging(app_name="laoda_launcher", daemon=False)
monkeypatch_print()

if __name__ == "__main__":
    app()
