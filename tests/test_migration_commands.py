"""
Tests for the pvesh command templates and secret redaction in log output.
"""
import contextlib
import io
import unittest


def _op(**kw):
    from pvetunnel.types import OperationDescriptor
    defaults = dict(vm_id=101, source_node="pve1", destination_node="pve2")
    defaults.update(kw)
    return OperationDescriptor(**defaults)


class TestCommandTemplates(unittest.TestCase):

    def tearDown(self):
        from pvetunnel.utils.logging import clear_secrets
        clear_secrets()

    def test_migrate_command_without_token(self):
        from pvetunnel.operations.migration import build_migrate_command
        self.assertEqual(
            build_migrate_command(_op()),
            "pvesh create /nodes/pve1/qemu/101/migrate --target pve2 --online 1 --with-local-disks 1",
        )

    def test_status_command_without_token(self):
        from pvetunnel.operations.migration import build_status_command
        self.assertEqual(
            build_status_command(_op()),
            "pvesh get /nodes/pve1/qemu/101/status/current -output-format json",
        )

    def test_token_header_is_appended(self):
        from pvetunnel.operations.migration import build_migrate_command, build_status_command
        op = _op(token_name="root@pam!ci", token_value="0f1e2d3c-4b5a")
        header = "-H 'Authorization: PVEAPIToken=root@pam!ci=0f1e2d3c-4b5a'"
        self.assertTrue(build_migrate_command(op).endswith(header))
        self.assertIn(header + " -output-format json", build_status_command(op))

    def test_partial_token_is_ignored(self):
        """A token name without a value (or vice versa) sends no header."""
        from pvetunnel.operations.migration import auth_header
        self.assertEqual(auth_header(_op(token_name="root@pam!ci")), "")
        self.assertEqual(auth_header(_op(token_value="0f1e2d3c-4b5a")), "")

    def test_node_names_are_shell_quoted(self):
        from pvetunnel.operations.migration import build_migrate_command
        cmd = build_migrate_command(_op(destination_node="pve2; reboot"))
        self.assertIn("--target 'pve2; reboot'", cmd)

    def test_token_not_in_descriptor_repr(self):
        self.assertNotIn("0f1e2d3c-4b5a", repr(_op(token_name="a", token_value="0f1e2d3c-4b5a")))


class TestRedaction(unittest.TestCase):

    def tearDown(self):
        from pvetunnel.utils.logging import clear_secrets, set_verbose
        clear_secrets()
        set_verbose(False)

    def test_token_never_reaches_log_output(self):
        from pvetunnel.operations.migration import build_migrate_command
        from pvetunnel.utils.logging import log
        cmd = build_migrate_command(_op(token_name="root@pam!ci", token_value="0f1e2d3c-4b5a"))
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            log(f"running {cmd}")
        self.assertNotIn("0f1e2d3c-4b5a", buf.getvalue())
        self.assertIn("***", buf.getvalue())

    def test_short_values_are_not_registered(self):
        from pvetunnel.utils.logging import redact, register_secret
        register_secret("ab")
        self.assertEqual(redact("abc ab"), "abc ab")

    def test_vlog_only_when_verbose(self):
        from pvetunnel.utils.logging import set_verbose, vlog
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            vlog("hidden")
            set_verbose(True)
            vlog("shown")
        self.assertNotIn("hidden", buf.getvalue())
        self.assertIn("shown", buf.getvalue())


if __name__ == "__main__":
    unittest.main()
