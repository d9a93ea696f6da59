"""
authorized_keys editing tests
"""
from mole.domain.credentials import AuthorizationList

OTHER = "ssh-rsa AAAAB3NzaC1yc2E admin@workstation"
LAPTOP = "ssh-ed25519 AAAAC3NzaLaptop laptop@tunnel-20240131"
PHONE = "ssh-ed25519 AAAAC3NzaPhone phone@tunnel-20240201"


def _write(path, *lines):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(line + "\n" for line in lines))


def test_missing_file_is_empty(tmp_path):
    keys = AuthorizationList(tmp_path / "ssh" / "authorized_keys")

    assert not keys.contains(LAPTOP)
    assert keys.remove_tagged("laptop") == 0
    assert keys.count_tagged() == 0
    assert not keys.path.exists()


def test_add_creates_file(tmp_path):
    keys = AuthorizationList(tmp_path / "ssh" / "authorized_keys")

    assert keys.add(LAPTOP)

    assert keys.path.read_text() == LAPTOP + "\n"


def test_remove_all_tagged_keeps_foreign_lines(tmp_path):
    path = tmp_path / "authorized_keys"
    _write(path, OTHER, LAPTOP, "# comment", PHONE)
    keys = AuthorizationList(path)

    assert keys.count_tagged() == 2
    assert keys.remove_all_tagged() == 2

    assert path.read_text() == OTHER + "\n# comment\n"


def test_marker_must_be_a_whole_token(tmp_path):
    path = tmp_path / "authorized_keys"
    _write(path, "ssh-ed25519 AAAA mylaptop@tunnel-20240131", LAPTOP)
    keys = AuthorizationList(path)

    assert keys.entries_for("laptop") == [LAPTOP]


def test_marker_needs_a_date(tmp_path):
    path = tmp_path / "authorized_keys"
    _write(path, "ssh-ed25519 AAAA laptop@tunnel-host")
    keys = AuthorizationList(path)

    assert keys.remove_tagged("laptop") == 0
    assert keys.count_tagged() == 0


def test_no_temp_files_left_behind(tmp_path):
    path = tmp_path / "authorized_keys"
    _write(path, OTHER, LAPTOP)
    keys = AuthorizationList(path)

    keys.add(PHONE)
    keys.remove_tagged("laptop")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["authorized_keys"]
    assert path.read_text() == OTHER + "\n" + PHONE + "\n"
