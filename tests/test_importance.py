import math

import pytest

from agentmem.services.importance import BASE_SCORE, score_importance


class TestScoreImportance:

    def test_empty_text_scores_the_base(self):
        assert score_importance('') == pytest.approx(BASE_SCORE)
        assert score_importance(None) == pytest.approx(BASE_SCORE)

    def test_length_bonus(self):
        assert score_importance('hello') == pytest.approx(BASE_SCORE + math.log10(2) / 5)

    def test_length_bonus_is_capped(self):
        long_text = ' '.join(['word'] * 5000)
        assert score_importance(long_text) == pytest.approx(BASE_SCORE + 0.1)

    def test_question_adds_a_bonus(self):
        assert score_importance('what time') + 0.05 == pytest.approx(score_importance('what time?'))

    def test_positive_feedback_adds_a_bonus(self):
        assert score_importance('hello') + 0.05 == pytest.approx(score_importance('thanks'))

    def test_decision_terms_count_per_term_and_cap(self):
        one = score_importance('we decide')
        assert one == pytest.approx(BASE_SCORE + 0.08 + math.log10(3) / 5)

        many = 'recommend suggest decide chose selected strategy approach solution'
        assert score_importance(many) == pytest.approx(BASE_SCORE + 0.3 + min(math.log10(9) / 5, 0.1))

    def test_high_value_terms_cap(self):
        text = 'urgent deadline budget contract deal'
        assert score_importance(text) == pytest.approx(BASE_SCORE + 0.15 + min(math.log10(6) / 5, 0.1))

    def test_total_is_capped_at_one(self):
        text = ('recommend suggest decide chose strategy plan approach urgent critical deadline budget '
                'thanks, that works? ' * 50)
        assert score_importance(text) <= 1.0

    def test_is_deterministic(self):
        text = 'Customer confirmed the contract renewal'
        assert score_importance(text) == score_importance(text)
