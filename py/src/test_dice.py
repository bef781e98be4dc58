import random
import unittest

import dice
from dice import (
    Advantage,
    AssignmentError,
    BinaryKind,
    BinaryOp,
    CyclicReferenceError,
    DiceRoll,
    Literal,
    MessageKind,
    Negate,
    VariableRef,
)
from environment import Environment, UndefinedNameError, UserEnvironmentView
from pratt import ParseError
from tokenizer import TokenizeError


# Hands out predetermined die results, in order.
class ScriptedRandom(random.Random):
    def __init__(self, results):
        super().__init__(0)
        self.results = list(results)

    def randint(self, a, b):
        value = self.results.pop(0)
        if not a <= value <= b:
            raise AssertionError(f"Scripted roll {value} outside [{a}, {b}]")
        return value


class RollTest(unittest.TestCase):
    def setUp(self):
        self.environment = Environment()
        self.env = UserEnvironmentView(self.environment, "tester")

    def execute(self, source, results=(), rng=None):
        if rng is None:
            rng = ScriptedRandom(results)
        return dice.execute(source, self.env, rng)

    def assertValueEquals(self, source, expected, results=()):
        self.assertEqual(self.execute(source, results).value, expected)

    def texts(self, result, kind=None):
        return [m.text for m in result.messages if kind is None or m.kind == kind]


class MathTest(RollTest):
    def test_basic_arithmetic(self):
        self.assertValueEquals("1+2", 3)
        self.assertValueEquals("2 * 4", 8)
        self.assertValueEquals("10 / 2", 5)
        self.assertValueEquals("7 - 10", -3)

    def test_precedence(self):
        self.assertValueEquals("2 + 3 * 4", 14)
        self.assertValueEquals("(2 + 3) * 4", 20)
        self.assertValueEquals("10 - 4 - 3", 3)
        self.assertValueEquals("100 / 10 / 5", 2)

    def test_floor_division(self):
        self.assertValueEquals("10 / 3", 3)
        self.assertValueEquals("-7 / 2", -4)

    def test_division_by_zero(self):
        with self.assertRaises(ZeroDivisionError):
            self.execute("1 / 0")

    def test_negate(self):
        result = self.execute("-4 + 5")
        self.assertEqual(result.value, 1)
        self.assertEqual(result.trace, "(-4 + 5)")
        self.assertValueEquals("--3", 3)
        self.assertValueEquals("-(1 + 2) * 2", -6)

    def test_trace(self):
        self.assertEqual(self.execute("1 + 2 * 3").trace, "(1 + (2 * 3))")
        self.assertEqual(self.execute("(1 + 2) * 3").trace, "((1 + 2) * 3)")
        self.assertEqual(self.execute("007").trace, "7")
        self.assertEqual(self.execute("5").messages, ())

    def test_parenthesized_trace_round_trip(self):
        for source in ["1 + 2 * 3", "-4 + 5", "10 / 3 - -2", "((8))", "2 * (3 - 7) / 2"]:
            result = self.execute(source)
            self.assertEqual(self.execute("(" + result.trace + ")").value, result.value)


class DiceTest(RollTest):
    def test_end_to_end(self):
        result = self.execute("2d6 + 3", [4, 5])
        self.assertEqual(result.value, 12)
        self.assertEqual(result.trace, "(2d6 + 3)")
        self.assertEqual(self.texts(result), ["2d6 → [5,4]"])
        self.assertEqual(result.messages[0].kind, MessageKind.ROLL)

    def test_random_range(self):
        rng = random.Random(1234)
        for _ in range(50):
            value = self.execute("2d6 + 3", rng=rng).value
            self.assertGreaterEqual(value, 5)
            self.assertLessEqual(value, 15)

    def test_single_die_default(self):
        result = self.execute("d8", [3])
        self.assertEqual(result.value, 3)
        self.assertEqual(self.texts(result), ["d8 → [3]"])

    def test_case_insensitive(self):
        self.assertValueEquals("2D6", 7, [3, 4])

    def test_keep_highest(self):
        result = self.execute("4d6k2", [1, 6, 3, 5])
        self.assertEqual(result.value, 11)
        self.assertEqual(self.texts(result), ["4d6k2 → [6,5,~~3,1~~]"])

    def test_keep_highest_random(self):
        rng = random.Random(99)
        for _ in range(20):
            result = self.execute("4d6k2", rng=rng)
            breakdown = self.texts(result)[0]
            kept, discarded = breakdown.split("[")[1].rstrip("]").split(",~~")
            kept_values = [int(v) for v in kept.split(",")]
            discarded_values = [int(v) for v in discarded.rstrip("~").split(",")]
            self.assertEqual(len(kept_values) + len(discarded_values), 4)
            self.assertEqual(result.value, sum(kept_values))
            self.assertGreaterEqual(min(kept_values), max(discarded_values))

    def test_keep_more_than_rolled(self):
        result = self.execute("2d6k3", [2, 5])
        self.assertEqual(result.value, 7)
        texts = self.texts(result)
        self.assertEqual(texts[0], "2d6k3 → [5,2]")
        self.assertEqual(len(texts), 2)
        self.assertTrue(texts[1].startswith("Warning"))

    def test_degenerate_dice(self):
        self.assertValueEquals("0d6", 0)
        self.assertValueEquals("3d0", 0)
        self.assertValueEquals("3d6k0", 0, [1, 2, 3])

    def test_natural_twenty(self):
        result = self.execute("d20 + 5", [20])
        self.assertEqual(result.value, 25)
        self.assertEqual(self.texts(result).count(dice.NATURAL_TWENTY), 1)
        self.assertNotIn(dice.NATURAL_ONE, self.texts(result))

    def test_natural_one(self):
        result = self.execute("1d20", [1])
        self.assertEqual(self.texts(result), ["1d20 → [1]", dice.NATURAL_ONE])

    def test_natural_with_kept_single_die(self):
        result = self.execute("2d20k1", [20, 4])
        self.assertIn(dice.NATURAL_TWENTY, self.texts(result))

    def test_no_natural_for_many_dice(self):
        for source, results in [("2d20", [20, 20]), ("2d20", [1, 1]), ("d6", [1])]:
            texts = self.texts(self.execute(source, results))
            self.assertNotIn(dice.NATURAL_TWENTY, texts)
            self.assertNotIn(dice.NATURAL_ONE, texts)

    def test_messages_in_evaluation_order(self):
        result = self.execute("d4 + d6 * d8", [1, 2, 3])
        self.assertEqual(self.texts(result), ["d4 → [1]", "d6 → [2]", "d8 → [3]"])


class ParseShapeTest(unittest.TestCase):
    def test_dice_node(self):
        self.assertEqual(dice.parse("4d6k3"), DiceRoll("4d6k3", 4, 6, 3))
        self.assertEqual(dice.parse("d20"), DiceRoll("d20", 1, 20, 1))

    def test_negate_binds_tighter(self):
        self.assertEqual(
            dice.parse("-4 + 5"),
            BinaryOp(BinaryKind.ADD, Negate(Literal(4)), Literal(5)),
        )

    def test_advantage_covers_arithmetic(self):
        self.assertEqual(
            dice.parse("1d20 + 5 @adv"),
            Advantage(BinaryOp(BinaryKind.ADD, DiceRoll("1d20", 1, 20, 1), Literal(5))),
        )

    def test_advantage_spellings(self):
        for suffix in ["@a", "@adv", "@advantage", "@ ADV"]:
            self.assertIsInstance(dice.parse("d20 " + suffix), Advantage)
        for suffix in ["@d", "@dis", "@disadv", "@disadvantage"]:
            self.assertIsInstance(dice.parse("d20 " + suffix), dice.Disadvantage)

    def test_compound_assignment_desugars(self):
        self.assertEqual(dice.describe(dice.parse("a += 2")), "a = (a! + 2)")
        self.assertEqual(dice.describe(dice.parse("hp -= 1d4")), "hp = (hp! - 1d4)")

    def test_nested_assignment_described_in_parentheses(self):
        self.assertEqual(
            dice.describe(dice.parse("b = 3 - (a = 1)")), "b = (3 - (a = 1))"
        )

    def test_names(self):
        self.assertEqual(dice.parse("str.mod"), VariableRef("str.mod"))
        self.assertEqual(dice.parse("dex"), VariableRef("dex"))

    def test_errors(self):
        with self.assertRaises(ParseError):
            dice.parse("(1 + 2")
        with self.assertRaises(ParseError):
            dice.parse("1 + 2)")
        with self.assertRaises(ParseError):
            dice.parse("1 2")
        with self.assertRaises(ParseError):
            dice.parse("* 3")
        with self.assertRaises(TokenizeError):
            dice.parse("1 $ 2")


class VariableTest(RollTest):
    def test_assign_stores_text(self):
        result = self.execute("a = 1d20", [7])
        self.assertEqual(result.value, 7)
        self.assertEqual(result.trace, "a = 1d20")
        self.assertEqual(self.env.get("a"), "1d20")
        self.assertTrue(self.environment.is_modified())

    def test_assign_hides_roll_messages(self):
        result = self.execute("a = 1d20 + 2", [20])
        self.assertEqual(result.messages, ())

    def test_lookup_rerolls(self):
        self.execute("a = 1d20", [7])
        first = self.execute("a", [3])
        second = self.execute("a", [18])
        self.assertEqual((first.value, second.value), (3, 18))
        self.assertEqual(first.trace, "a")
        self.assertEqual(self.texts(first), ["a → 1d20", "1d20 → [3]"])
        self.assertEqual(first.messages[0].kind, MessageKind.LOOKUP)

    def test_lookup_random_range(self):
        rng = random.Random(5)
        self.execute("a = 1d20", rng=rng)
        for _ in range(2):
            value = self.execute("a", rng=rng).value
            self.assertGreaterEqual(value, 1)
            self.assertLessEqual(value, 20)

    def test_trace_keeps_names(self):
        self.env.set("str", "3")
        result = self.execute("d20 + str", [10])
        self.assertEqual(result.value, 13)
        self.assertEqual(result.trace, "(d20 + str)")
        self.execute("check = d20 + str", [10])
        self.assertEqual(self.env.get("check"), "(d20 + str)")

    def test_undefined_name(self):
        with self.assertRaises(UndefinedNameError) as caught:
            self.execute("b")
        self.assertIn("b", str(caught.exception))
        with self.assertRaises(NameError):
            self.execute("1 + b")

    def test_invalid_assignment_target(self):
        with self.assertRaises(AssignmentError):
            self.execute("1 = 2")
        with self.assertRaises(AssignmentError):
            self.execute("a + 1 = 2")
        with self.assertRaises(AssignmentError):
            self.execute("1 += 2")
        with self.assertRaises(AssignmentError):
            self.execute("a = b = 2")
        self.assertEqual(self.env.names(), {})

    def test_nested_assignment_stored_reparses(self):
        result = self.execute("b = 3 - (a = 1)")
        self.assertEqual(result.value, 2)
        self.assertEqual(result.trace, "b = (3 - (a = 1))")
        self.assertEqual(self.env.get("b"), "(3 - (a = 1))")
        self.assertValueEquals("b", 2)
        self.assertEqual(self.env.get("a"), "1")

    def test_assignment_as_value_reparses(self):
        result = self.execute("b = (a = 1d4)", [3])
        self.assertEqual(result.trace, "b = (a = 1d4)")
        self.assertEqual(self.env.get("b"), "(a = 1d4)")
        self.assertValueEquals("b", 2, [2])
        self.assertEqual(self.env.get("a"), "1d4")

    def test_negated_assignment_reparses(self):
        self.assertValueEquals("b = -(a = 5)", -5)
        self.assertEqual(self.env.get("b"), "-(a = 5)")
        self.assertValueEquals("b", -5)

    def test_parenthesized_target(self):
        self.assertValueEquals("(a) = 4", 4)
        self.assertEqual(self.env.get("a"), "4")

    def test_assignment_lowest_precedence(self):
        self.execute("a = 2 + 3 * 4")
        self.assertEqual(self.env.get("a"), "(2 + (3 * 4))")
        self.assertValueEquals("a", 14)

    def test_compound_assignment_freezes_value(self):
        self.execute("a = 1d20", [7])
        result = self.execute("a += 3", [12])
        self.assertEqual(result.value, 15)
        self.assertEqual(self.env.get("a"), "(12 + 3)")
        self.assertEqual(self.texts(result, MessageKind.ROLL), [])
        self.assertEqual(
            self.texts(result, MessageKind.BANG), ["a → 1d20", "1d20 → [12]"]
        )
        # no dice left to roll
        self.assertValueEquals("a", 15)
        self.assertValueEquals("a", 15)

    def test_compound_subtract(self):
        self.env.set("hp", "20")
        self.assertValueEquals("hp -= 2d4", 15, [2, 3])
        self.assertEqual(self.env.get("hp"), "(20 - 2d4)")
        self.assertValueEquals("hp -= 5", 10, [2, 3])

    def test_self_reference_is_cyclic(self):
        self.execute("a = 1")
        self.execute("a = a + 1")
        with self.assertRaises(CyclicReferenceError) as caught:
            self.execute("a")
        self.assertIn("a → a", str(caught.exception))

    def test_indirect_cycle(self):
        self.env.set("a", "b + 1")
        self.env.set("b", "c")
        self.env.set("c", "a")
        with self.assertRaises(CyclicReferenceError) as caught:
            self.execute("a")
        self.assertIn("a → b → c → a", str(caught.exception))

    def test_repeated_reference_is_not_cyclic(self):
        self.env.set("mod", "3")
        self.env.set("attack", "d20 + mod")
        self.assertValueEquals("attack + mod + mod", 18, [9])


class BangTest(RollTest):
    def test_bang_freezes_trace(self):
        result = self.execute("2d6!", [6, 1])
        self.assertEqual(result.value, 7)
        self.assertEqual(result.trace, "7")
        self.assertEqual(self.texts(result, MessageKind.BANG), ["2d6 → [6,1]"])

    def test_bang_in_assignment(self):
        self.execute("a = 2d6! + 1", [6, 1])
        self.assertEqual(self.env.get("a"), "(7 + 1)")
        self.assertValueEquals("a", 8)

    def test_replay_with_seed(self):
        self.execute("a = 1d20", rng=random.Random(1))
        first = dice.execute("a!", self.env, random.Random(42))
        second = dice.execute("a!", self.env, random.Random(42))
        self.assertEqual(first.value, second.value)
        self.assertEqual(first.trace, str(first.value))

    def test_negative_bang_reparses(self):
        self.execute("a = -2d4!", [3, 4])
        self.assertEqual(self.env.get("a"), "-7")
        self.assertValueEquals("a", -7)


class AdvantageTest(RollTest):
    def test_advantage_keeps_higher(self):
        result = self.execute("1d20 @adv", [5, 15])
        self.assertEqual(result.value, 15)
        self.assertEqual(result.trace, "(1d20) @advantage")
        self.assertEqual(self.texts(result), ["1d20 → [15]", "~~1d20 → [5]~~"])

    def test_disadvantage_keeps_lower(self):
        result = self.execute("1d20 @disadvantage", [5, 15])
        self.assertEqual(result.value, 5)
        self.assertEqual(result.trace, "(1d20) @disadvantage")
        self.assertEqual(self.texts(result), ["1d20 → [5]", "~~1d20 → [15]~~"])

    def test_tie_keeps_first(self):
        result = self.execute("1d20 + 1 @a", [8, 8])
        self.assertEqual(result.value, 9)
        self.assertEqual(self.texts(result), ["1d20 → [8]", "~~1d20 → [8]~~"])

    def test_struck_messages_not_nested(self):
        result = self.execute("4d6k2 @adv", [1, 6, 3, 5, 1, 1, 1, 1])
        self.assertEqual(result.value, 11)
        self.assertEqual(
            self.texts(result),
            ["4d6k2 → [6,5,~~3,1~~]", "~~4d6k2 → [1,1,1,1]~~"],
        )

    def test_struck_messages_keep_kind(self):
        result = self.execute("d20 @adv", [20, 3])
        kinds = [m.kind for m in result.messages]
        self.assertEqual(kinds, [MessageKind.ROLL] * 3)
        self.assertEqual(self.texts(result)[1], dice.NATURAL_TWENTY)

    def test_stored_advantage_reparses(self):
        self.execute("init = d20 + 2 @adv", [4, 11])
        self.assertEqual(self.env.get("init"), "((d20 + 2)) @advantage")
        self.assertValueEquals("init", 19, [17, 6])


class ExecuteTest(RollTest):
    def test_empty_formula(self):
        with self.assertRaises(ParseError):
            self.execute("   ")
        with self.assertRaises(ParseError):
            self.execute("")

    def test_default_randomness(self):
        value = dice.execute("d6", self.env).value
        self.assertIn(value, range(1, 7))


if __name__ == "__main__":
    unittest.main()
