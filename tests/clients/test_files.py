# tests/clients/test_files.py
from videogen.files import download_path, normalize_folder_id, remove_files, safe_file_name, sanitize_file_name


class TestFileNames:
    def test_unsafe_characters_replaced(self):
        assert sanitize_file_name('Stars: a/b "tale"?') == "Stars_a_b_tale"

    def test_length_is_capped(self):
        assert len(sanitize_file_name("x" * 200)) == 80

    def test_empty_title_gets_timestamp_name(self):
        assert sanitize_file_name(None).startswith("video_")
        assert sanitize_file_name("///").startswith("video_")

    def test_extension(self):
        assert safe_file_name("Moon dust") == "Moon_dust.mp4"


class TestNormalizeFolderId:
    """Folder ids may be pasted as URLs."""

    def test_folder_url(self):
        assert normalize_folder_id("https://drive.google.com/drive/folders/AbC_12-x?usp=sharing") == "AbC_12-x"

    def test_id_param_url(self):
        assert normalize_folder_id("https://drive.google.com/open?id=XyZ9") == "XyZ9"

    def test_plain_id_and_blank(self):
        assert normalize_folder_id("  plain-id ") == "plain-id"
        assert normalize_folder_id("   ") is None
        assert normalize_folder_id(None) is None


class TestLocalFiles:
    def test_download_path_is_unique_per_job_and_message(self, download_dir):
        path = download_path("job-1", 42)
        assert path == download_dir / "job-1--42.mp4"
        assert download_dir.is_dir()

    def test_remove_files_reports_missing(self, tmp_path):
        present = tmp_path / "a.mp4"
        present.write_bytes(b"1")
        deleted, missing = remove_files([str(present), str(tmp_path / "gone.mp4"), None])
        assert deleted == [str(present)]
        assert missing == [str(tmp_path / "gone.mp4")]
        assert not present.exists()
