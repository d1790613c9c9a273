import os
import unittest

from sitemirror.storage.filesystem import (
    MirrorStorage,
    OutputDirError,
    OutputDirExistsError,
    PathSafetyError,
    StorageError,
    check_contained,
    child_path,
    prepare_output_dir,
)
from tests.fakes import TempDirMixin

HTML = "text/html; charset=utf-8"


class TestTargetPath(unittest.TestCase):

    def setUp(self):
        self.root = os.path.join(os.sep, "mirror", "example.com")
        self.storage = MirrorStorage(self.root)

    def local(self, *parts):
        return os.path.join(self.root, *parts)

    def test_root_is_index(self):
        self.assertEqual(self.storage.target_path("/", HTML), self.local("index.html"))
        self.assertEqual(self.storage.target_path("", HTML), self.local("index.html"))

    def test_directory_is_index(self):
        self.assertEqual(self.storage.target_path("/blog/", HTML), self.local("blog", "index.html"))

    def test_extension_added_from_type(self):
        self.assertEqual(self.storage.target_path("/about", HTML), self.local("about.html"))
        self.assertEqual(self.storage.target_path("/css/site", "text/plain; charset=utf-8"),
                         self.local("css", "site.txt"))

    def test_existing_extension_kept(self):
        self.assertEqual(self.storage.target_path("/img/logo.png", HTML), self.local("img", "logo.png"))

    def test_percent_decoding(self):
        self.assertEqual(self.storage.target_path("/a%20b/c.txt", HTML), self.local("a b", "c.txt"))


class TestCheckContained(unittest.TestCase):

    def setUp(self):
        self.root = os.path.join(os.sep, "tmp", "x")

    def test_inside(self):
        check_contained(self.root, os.path.join(self.root, "a", "b.html"))

    def test_parent_traversal(self):
        with self.assertRaises(PathSafetyError):
            check_contained(self.root, self.root + os.sep + ".." + os.sep + "y.html")

    def test_sibling_with_common_prefix(self):
        with self.assertRaises(PathSafetyError):
            check_contained(self.root, os.path.join(os.sep, "tmp", "xy", "file.html"))

    def test_shorter_than_root(self):
        with self.assertRaises(PathSafetyError):
            check_contained(self.root, os.path.join(os.sep, "tmp"))


class TestChildPath(unittest.TestCase):

    def setUp(self):
        self.root = os.path.join(os.sep, "mirror")

    def test_plain_name(self):
        self.assertEqual(child_path(self.root, "example.com"), os.path.join(self.root, "example.com"))

    def test_names_that_leave_the_root(self):
        for name in (".", "..", "", os.path.join("a", "b"), os.path.join("..", "x")):
            with self.assertRaises(PathSafetyError, msg=name):
                child_path(self.root, name)


class TestPrepareOutputDir(TempDirMixin, unittest.TestCase):

    def setUp(self):
        self.base = self.make_tempdir()
        self.target = os.path.join(self.base, "example.com")

    def test_creates_directory(self):
        prepare_output_dir(self.target, overwrite=False)
        self.assertTrue(os.path.isdir(self.target))

    def test_existing_directory_without_overwrite(self):
        os.mkdir(self.target)
        marker = os.path.join(self.target, "keep.txt")
        with open(marker, "w") as f:
            f.write("old")

        with self.assertRaises(OutputDirExistsError):
            prepare_output_dir(self.target, overwrite=False)
        self.assertTrue(os.path.exists(marker))

    def test_existing_directory_with_overwrite(self):
        os.mkdir(self.target)
        with open(os.path.join(self.target, "old.txt"), "w") as f:
            f.write("old")

        prepare_output_dir(self.target, overwrite=True)
        self.assertEqual(os.listdir(self.target), [])

    def test_path_occupied_by_file(self):
        with open(self.target, "w") as f:
            f.write("not a directory")
        with self.assertRaises(OutputDirError):
            prepare_output_dir(self.target, overwrite=True)


class TestMirrorStorageSave(TempDirMixin, unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.base = self.make_tempdir()
        self.root = os.path.join(self.base, "site")
        os.mkdir(self.root)
        self.storage = MirrorStorage(self.root)

    async def test_save_writes_body(self):
        path = await self.storage.save("/docs/page", HTML, b"<p>hi</p>")
        self.assertEqual(path, os.path.join(self.root, "docs", "page.html"))
        with open(path, "rb") as f:
            self.assertEqual(f.read(), b"<p>hi</p>")
        self.assertEqual(os.listdir(os.path.join(self.root, "docs")), ["page.html"])
        self.assertEqual(self.storage.get_stats()["total_stored"], 1)

    async def test_traversal_is_rejected(self):
        candidate = os.path.normpath(self.storage.target_path("/../escape", HTML))
        with self.assertRaises(PathSafetyError):
            await self.storage.save("/../escape", HTML, b"x")
        self.assertFalse(os.path.exists(candidate))
        self.assertEqual(sorted(os.listdir(self.base)), ["site"])

    async def test_encoded_traversal_is_rejected(self):
        with self.assertRaises(PathSafetyError):
            await self.storage.save("/%2e%2e/escape.txt", HTML, b"x")
        self.assertEqual(sorted(os.listdir(self.base)), ["site"])

    async def test_nul_byte_is_rejected(self):
        with self.assertRaises(PathSafetyError):
            await self.storage.save("/a%00b", HTML, b"x")
        self.assertEqual(os.listdir(self.root), [])

    async def test_file_in_the_way(self):
        with open(os.path.join(self.root, "blocked"), "w") as f:
            f.write("file")
        with self.assertRaises(StorageError) as ctx:
            await self.storage.save("/blocked/inner.txt", HTML, b"x")
        self.assertNotIsInstance(ctx.exception, PathSafetyError)

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    async def test_symlink_escape_when_resolving(self):
        outside = os.path.join(self.base, "outside")
        os.mkdir(outside)
        os.symlink(outside, os.path.join(self.root, "link"))

        storage = MirrorStorage(self.root, resolve_symlinks=True)
        with self.assertRaises(PathSafetyError):
            await storage.save("/link/x.txt", HTML, b"x")
        self.assertEqual(os.listdir(outside), [])


if __name__ == "__main__":
    unittest.main()
