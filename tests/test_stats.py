import unittest
from fractions import Fraction

from nakamonrec.records.models import LOSE, WIN, BattleRecord
from nakamonrec.records.stats import get_statistics, monster_ranking, win_rate_series


def make(result: str, party: int, enemy=("e1", "e2", "e3", "e4")) -> BattleRecord:
    return BattleRecord("2024-01-01 00:00:00", result, party, ("m1", "m2", "m3", "m4"), tuple(enemy))


class StatisticsTests(unittest.TestCase):
    def setUp(self) -> None:
        # 45 battles; parties cycle 0,0,1,2; every third battle is lost
        self.records = [make(LOSE if i % 3 == 0 else WIN, (0, 0, 1, 2)[i % 4]) for i in range(45)]

    def test_totals(self) -> None:
        s = get_statistics(self.records)
        self.assertEqual(s.total_battles, 45)
        self.assertEqual((s.total_wins, s.total_losses), (30, 15))
        self.assertAlmostEqual(s.win_rate, 200 / 3)

    def test_per_party_rates_match_exact_counts(self) -> None:
        s = get_statistics(self.records)
        for p in s.parties:
            used = [r for r in self.records if r.party_index == p.index]
            wins = sum(1 for r in used if r.result == WIN)
            self.assertEqual(p.battles, len(used))
            self.assertEqual(p.wins, wins)
            self.assertAlmostEqual(p.win_rate, float(Fraction(wins, len(used)) * 100))
        self.assertEqual([p.battles for p in s.parties], [23, 11, 11])
        self.assertAlmostEqual(sum(p.usage_rate for p in s.parties), 100.0)

    def test_empty_history(self) -> None:
        s = get_statistics([])
        self.assertEqual(s.win_rate, 0.0)
        self.assertTrue(all(p.usage_rate == 0.0 and p.win_rate == 0.0 for p in s.parties))

    def test_undetected_party_not_counted_per_party(self) -> None:
        s = get_statistics([make(WIN, -1), make(LOSE, 0)])
        self.assertEqual(s.parties[0].usage_rate, 50.0)
        self.assertEqual(sum(p.battles for p in s.parties), 1)

    def test_win_rate_series(self) -> None:
        series = win_rate_series(self.records[:4])
        self.assertEqual(series, [0.0, 50.0, float(Fraction(200, 3)), 50.0])
        self.assertAlmostEqual(win_rate_series(self.records)[-1], 200 / 3)


class MonsterRankingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.records = [
            make(WIN, 0, ("slime", "slime", "golem", "?")),
            make(LOSE, 0, ("slime", "dracky", "?", "?")),
            make(WIN, 1, ("golem", "dracky", "golem", "golem")),
            make(WIN, 2, ("chimaera", "?", "?", "?")),
        ]

    def test_counts_once_per_battle_and_skips_placeholder(self) -> None:
        ranks = {r.name: r for r in monster_ranking(self.records)}
        self.assertNotIn("?", ranks)
        self.assertEqual(ranks["slime"].count, 2)
        self.assertEqual(ranks["golem"].count, 2)
        self.assertEqual(ranks["dracky"].count, 2)
        self.assertEqual(ranks["slime"].appearance_rate, 50.0)
        self.assertEqual(ranks["slime"].win_rate, 50.0)
        self.assertEqual(ranks["golem"].win_rate, 100.0)

    def test_sort_orders(self) -> None:
        by_count = [r.name for r in monster_ranking(self.records)]
        self.assertEqual(by_count, ["golem", "dracky", "slime", "chimaera"])
        by_rate = [r.name for r in monster_ranking(self.records, sort="win_rate")]
        self.assertEqual(by_rate, ["dracky", "slime", "golem", "chimaera"])
        with self.assertRaises(ValueError):
            monster_ranking(self.records, sort="name")

    def test_win_rate_sort_puts_lowest_first(self) -> None:
        records = [make(WIN, 0, ("easy", "?", "?", "?")), make(LOSE, 0, ("hard", "?", "?", "?"))]
        self.assertEqual([r.name for r in monster_ranking(records, sort="win_rate")], ["hard", "easy"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
