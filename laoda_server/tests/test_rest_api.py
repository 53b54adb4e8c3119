import json


def make_folders(work, *names):
    paths = []
    for name in names:
        folder = work / name
        folder.mkdir(parents=True)
        (folder / "README.md").write_text(name)
        paths.append(str(folder))
    return paths


def imported(client, *paths):
    for path in paths:
        r = client.post("/api/import", json={"path": path})
        assert r.status_code == 200, r.text
        assert r.json()["success"]


def leaf_paths(client):
    paths = []
    for node in client.get("/api/nodes").json():
        if node["type"] == "group":
            paths.extend(child["path"] for child in node["children"])
        else:
            paths.append(node["path"])
    return paths


def test_status(client):
    r = client.get("/status")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "folders": 0, "revision": 0, "pending": 0}


def test_import_and_list(client, daemon_env):
    work, _, _ = daemon_env
    (app,) = make_folders(work, "app")
    imported(client, app + "/")
    nodes = client.get("/api/nodes").json()
    assert [(n["path"], n["name"], n["branch"]) for n in nodes] == [(app, "app", "main")]
    # importing again changes nothing
    imported(client, app)
    assert len(client.get("/api/nodes").json()) == 1


def test_invalid_and_unknown_paths(client, daemon_env):
    work, _, _ = daemon_env
    r = client.post("/api/import", json={"path": str(work / "missing")})
    assert r.status_code == 400
    assert "Invalid path" in r.json()["detail"]
    r = client.post("/api/duplicate", json={"path": str(work)})
    assert r.status_code == 404
    r = client.post("/api/ungroup", json={"group_id": "group-nope"})
    assert r.status_code == 404
    r = client.post("/api/group", json={"paths": [], "name": "x"})
    assert r.status_code == 400


def test_duplicate_delete_roundtrip(client, daemon_env):
    work, _, _ = daemon_env
    (app,) = make_folders(work, "app")
    imported(client, app)

    r = client.post("/api/duplicate", json={"path": app})
    outcome = r.json()
    assert outcome["success"]
    assert outcome["new_path"] == str(work / "app-1")
    assert (work / "app-1" / "README.md").read_text() == "app"
    assert leaf_paths(client) == [app, str(work / "app-1")]

    r = client.post("/api/delete", json={"path": str(work / "app-1")})
    assert r.json()["success"]
    assert not (work / "app-1").exists()
    assert leaf_paths(client) == [app]


def test_move_bulk_reports_partial_failure(client, daemon_env):
    work, _, _ = daemon_env
    x, y = make_folders(work, "a/x", "a/y")
    (work / "b" / "y").mkdir(parents=True)
    imported(client, x, y)

    r = client.post("/api/move-bulk", json={"paths": [x, y], "target_parent": str(work / "b"), "mode": "move"})

    outcome = r.json()
    assert outcome["success"]
    assert [(res["success"], res["error"]) for res in outcome["results"]] == [(True, None), (False, "Target exists")]
    assert leaf_paths(client) == [str(work / "b" / "x"), y]


def test_group_then_ungroup_physical(client, daemon_env):
    work, _, _ = daemon_env
    x, y = make_folders(work, "a/x", "b/y")
    imported(client, x, y)

    outcome = client.post("/api/group", json={"paths": [x, y], "name": "tools"}).json()
    assert outcome["success"]
    group = client.get("/api/nodes").json()[0]
    assert (group["type"], group["kind"], group["path"]) == ("group", "physical", str(work / "tools"))
    assert (work / "tools" / "x" / "README.md").exists()

    outcome = client.post("/api/ungroup", json={"group_id": outcome["group_id"]}).json()
    assert outcome["success"]
    assert leaf_paths(client) == [str(work / "x"), str(work / "y")]
    assert not (work / "tools").exists()


def test_preferences(client):
    prefs = client.get("/api/preferences").json()
    assert prefs["operation_mode"] == "move"
    r = client.patch("/api/preferences", json={"operation_mode": "copy", "sort_by_name": True})
    assert r.json()["operation_mode"] == "copy"
    r = client.patch("/api/preferences", json={"operation_mode": "teleport"})
    assert r.status_code == 400
    assert client.get("/api/preferences").json()["sort_by_name"] is True


def test_open_in_editor_and_picker(client, daemon_env):
    work, _, os_stub = daemon_env
    (app,) = make_folders(work, "app")

    r = client.post("/api/pick-folder")
    assert r.json() == {"path": None, "cancelled": True}
    os_stub.picked = app
    r = client.post("/api/pick-folder")
    assert r.json()["path"] == app

    r = client.post("/api/open", json={"path": app})
    assert r.json() == {"success": True, "editor": "Cursor"}
    assert os_stub.opened == [("Cursor", app)]


def test_sync_managed_file(client, daemon_env):
    work, _, _ = daemon_env
    app, app2 = make_folders(work, "app", "app-2")
    imported(client, app, app2)
    client.patch("/api/preferences", json={"managed_files": [
        {"id": "env", "filename": ".env.local", "content": "KEY=1", "target_pattern": "app"},
    ]})

    r = client.post("/api/managed-files/env/sync")

    assert r.json() == {"written": [app, app2], "failed": []}
    assert (work / "app-2" / ".env.local").read_text() == "KEY=1"
    assert client.post("/api/managed-files/nope/sync").status_code == 404


def test_ls(client, daemon_env):
    work, _, _ = daemon_env
    make_folders(work, "one", ".hidden")
    listing = client.get("/api/ls", params={"path": str(work)}).json()
    assert [d["name"] for d in listing["dirs"]] == ["one"]
    assert client.get("/api/ls", params={"path": str(work / "nope")}).status_code == 400


def test_state_is_saved_on_change(client, daemon_env, tmp_path):
    work, _, _ = daemon_env
    (app,) = make_folders(work, "app")
    imported(client, app)
    saved = json.loads((tmp_path / "state.json").read_text())
    assert [n["path"] for n in saved["nodes"]] == [app]


def test_websocket_sends_snapshot_then_updates(client, daemon_env):
    work, _, _ = daemon_env
    (app,) = make_folders(work, "app")
    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "REGISTRY_UPDATED"
        assert first["nodes"] == []
        assert ws.receive_json()["type"] == "TOASTS_UPDATED"
        imported(client, app)
        seen = []
        while not any(m["type"] == "REGISTRY_UPDATED" and m["nodes"] for m in seen):
            seen.append(ws.receive_json())
        assert any(m["type"] == "TOASTS_UPDATED" for m in seen)
