import unittest

import reconcile_card_limits
import repo
from support import DBTestCase


class ReconcileScriptTests(DBTestCase):
    def setUp(self):
        super().setUp()
        self.stale = self.make_card()
        self.fresh = self.make_card(name="Em dia")
        self.add_tx(40, "2025-02-20", card_id=self.stale["id"])
        repo.set_card_limit_used(self.stale["id"], 500, user_id=self.uid)

    def test_dry_run_reports_without_writing(self):
        stats = reconcile_card_limits.run(apply=False, user_id=self.uid)
        self.assertEqual(stats["cards"], 2)
        self.assertEqual(stats["divergent"], 1)
        self.assertEqual(stats.get("applied", 0), 0)
        self.assertEqual(repo.get_credit_card(self.stale["id"], user_id=self.uid)["limit_used"], 500)

    def test_apply_writes_recomputed_value(self):
        stats = reconcile_card_limits.run(apply=True, user_id=self.uid)
        self.assertEqual(stats["applied"], 1)
        self.assertEqual(repo.get_credit_card(self.stale["id"], user_id=self.uid)["limit_used"], 40)

    def test_divergence_is_logged_in_reais(self):
        with self.assertLogs("reconcile_card_limits", level="INFO") as cm:
            reconcile_card_limits.run(apply=False, user_id=self.uid)
        self.assertTrue(any("R$ 500,00" in line and "R$ 40,00" in line for line in cm.output))

    def test_all_users(self):
        stats = reconcile_card_limits.run(apply=True)
        self.assertEqual(stats["cards"], 2)
        self.assertEqual(reconcile_card_limits.run(apply=False).get("divergent", 0), 0)


if __name__ == "__main__":
    unittest.main()
