import numpy as np
import pytest

from actor import AgentAction
from arena import TileType, WallPattern
from events import EPISODE_STEPPED, LEARNING_CHANGED
from q_learning import (QTable, Trainer, TrainerConfig, bellman_update, decayed_parameter,
                        OUTCOME_DIED, OUTCOME_TIMEOUT, OUTCOME_WON, RECENT_WINDOW)
from helpers import clear_board


def make_trainer(seed=0, **overrides):
    return Trainer(TrainerConfig(**overrides), seed=seed)


def test_qtable_creates_zero_entries_lazily():
    trainer = make_trainer()
    table = QTable()
    assert len(table) == 0
    values = table.values(trainer.state)
    assert values.shape == (9,)
    assert not values.any()
    assert table.values(trainer.state) is values
    assert trainer.state in table
    assert len(table) == 1


def test_qtable_shares_entries_between_equal_states():
    trainer = make_trainer()
    table = QTable()
    table.set_value(trainer.actor.snapshot(), AgentAction.MOVE_UP, 2.5)
    assert table.values(trainer.actor.snapshot())[AgentAction.MOVE_UP] == 2.5
    assert len(table) == 1
    table.clear()
    assert len(table) == 0


def test_bellman_update():
    assert bellman_update(0.0, 1.0, 2.0, 0.5, 0.9) == pytest.approx(1.4)


@pytest.mark.parametrize("episode,expected", [
    (0, 0.5),
    (50, 0.2505),
    (100, 0.001),
    (250, 0.001),
])
def test_decayed_parameter(episode, expected):
    assert decayed_parameter(0.5, episode, 100, True) == pytest.approx(expected)


def test_decay_disabled_or_without_schedule():
    assert decayed_parameter(0.5, 50, 100, False) == 0.5
    assert decayed_parameter(0.5, 3, 0, True) == 0.5


def test_invalid_config():
    with pytest.raises(ValueError):
        TrainerConfig(epsilon=1.5).validate()
    with pytest.raises(ValueError):
        TrainerConfig(width=0).validate()
    with pytest.raises(ValueError):
        Trainer(TrainerConfig(bomb_timer=0))


def test_greedy_selection_picks_highest_value():
    trainer = make_trainer()
    state = trainer.state
    trainer.q_table.set_value(state, AgentAction.MOVE_UP, 1.0)
    trainer.q_table.set_value(state, AgentAction.MOVE_RIGHT, 2.0)
    legal = [AgentAction.MOVE_UP, AgentAction.MOVE_RIGHT]
    for _ in range(20):
        assert trainer.select_action(state, legal, 0.0) == AgentAction.MOVE_RIGHT


def test_greedy_ties_keep_lowest_ordinal():
    trainer = make_trainer()
    legal = [AgentAction.BOMB_RIGHT, AgentAction.MOVE_UP, AgentAction.NONE]
    assert trainer.select_action(trainer.state, legal, 0.0) == AgentAction.NONE


def test_exploration_stays_within_legal_actions():
    trainer = make_trainer(seed=7)
    legal = [AgentAction.NONE, AgentAction.MOVE_UP, AgentAction.BOMB_UP]
    picked = {trainer.select_action(trainer.state, legal, 1.0) for _ in range(200)}
    assert picked <= set(legal)
    assert len(picked) > 1


def test_step_is_ignored_until_started():
    trainer = make_trainer()
    assert not trainer.learning
    assert trainer.step() is None
    assert len(trainer.q_table) == 0


def test_start_and_stop(events):
    changes = []
    events.subscribe(LEARNING_CHANGED, changes.append)
    trainer = Trainer(TrainerConfig(epsilon=0.3, alpha=0.2), events=events, seed=1)

    trainer.start()
    assert trainer.learning
    assert trainer.episode_count == 0
    assert trainer.win_count == 0
    assert len(trainer.q_table) == 0

    trainer.step()
    assert trainer.decayed_epsilon == pytest.approx(0.3)
    assert trainer.decayed_alpha == pytest.approx(0.2)
    assert len(trainer.q_table) > 0

    trainer.learning = False
    assert not trainer.learning
    assert trainer.decayed_epsilon == 0.0
    assert trainer.decayed_alpha == 0.0
    assert len(trainer.q_table) > 0
    assert changes == [True, False]


def test_restart_clears_the_table():
    trainer = make_trainer()
    trainer.train(max_steps=5)
    trainer.stop()
    trainer.start()
    assert len(trainer.q_table) == 0
    assert trainer.turn_count == 0


def test_step_applies_bellman_update():
    trainer = make_trainer(epsilon=0.0, alpha=0.5, gamma=0.9, parameter_decay=False)
    trainer.start()
    state = trainer.state
    trainer.q_table.set_value(state, AgentAction.MOVE_RIGHT, 2.0)

    result = trainer.step()

    assert result.action == AgentAction.MOVE_RIGHT
    # moving from (0, 0) to (1, 0) gets one step closer to the wall at (3, 0)
    assert result.reward == 4.0
    assert not result.episode_ended
    assert trainer.q_table.values(state)[AgentAction.MOVE_RIGHT] == pytest.approx(3.0)
    assert trainer.turn_count == 1
    assert trainer.actor.position == (1, 0)


def test_timeout_ends_the_episode():
    trainer = make_trainer(max_turns=0)
    trainer.start()
    result = trainer.step()
    assert result.episode_ended
    assert result.outcome in (OUTCOME_TIMEOUT, OUTCOME_DIED)
    assert trainer.episode_count == 1
    assert trainer.turn_count == 0
    assert trainer.overall_win_rate == 0.0
    assert trainer.learning


def test_learning_stops_after_max_episodes():
    trainer = make_trainer(max_turns=2, max_episodes=3)
    trainer.train()
    assert not trainer.learning
    assert trainer.episode_count == 4
    assert len(trainer.recent_wins) == 4
    assert trainer.decayed_epsilon == 0.0


def test_zero_max_episodes_stops_after_first_episode():
    trainer = make_trainer(max_turns=0, max_episodes=0)
    steps = trainer.train()
    assert steps == 1
    assert trainer.episode_count == 1
    assert not trainer.learning


def test_recent_window_is_bounded():
    trainer = make_trainer(max_turns=0, max_episodes=150)
    trainer.train()
    assert trainer.episode_count == 151
    assert len(trainer.recent_wins) == RECENT_WINDOW
    assert trainer.recent_win_rate == 0.0


def test_recent_rate_drops_the_oldest_episodes():
    trainer = make_trainer(max_episodes=1000)
    trainer.start()
    for episode in range(150):
        won = episode < 60
        trainer.world.breakable_wall_count = 0 if won else 1
        trainer._finish_episode(OUTCOME_WON if won else OUTCOME_TIMEOUT)
        if episode == 99:
            assert trainer.recent_win_rate == pytest.approx(0.6)

    assert trainer.episode_count == 150
    assert trainer.win_count == 60
    assert len(trainer.recent_wins) == RECENT_WINDOW
    assert trainer.recent_win_rate == pytest.approx(0.1)
    assert trainer.overall_win_rate == pytest.approx(0.4)


def test_verbose_reaches_the_arena(capsys):
    trainer = Trainer(TrainerConfig(), verbose=True)
    assert trainer.world.verbose
    assert '[INFO] Arena generated' in capsys.readouterr().out


def test_clearing_the_last_wall_counts_as_a_win():
    trainer = make_trainer(epsilon=0.0, width=3, height=1, bomb_timer=1, max_turns=10)
    trainer.start()
    clear_board(trainer.world)
    trainer.world.set_tile_type((2, 0), TileType.BREAKABLE)
    trainer.state = trainer.actor.snapshot()
    trainer.q_table.set_value(trainer.state, AgentAction.BOMB_RIGHT, 1.0)

    first = trainer.step()
    assert first.action == AgentAction.BOMB_RIGHT
    assert not first.episode_ended

    # the only move left is to wait, and the blast reaches the agent too
    second = trainer.step()
    assert second.action == AgentAction.NONE
    assert second.episode_ended
    assert second.outcome == OUTCOME_DIED
    assert trainer.win_count == 1
    assert trainer.overall_win_rate == 1.0
    assert trainer.recent_win_rate == 1.0


def test_each_step_publishes_stats(events):
    published = []
    events.subscribe(EPISODE_STEPPED, published.append)
    trainer = Trainer(TrainerConfig(), events=events, seed=3)
    trainer.train(max_steps=4)
    assert len(published) == 4
    assert published[-1].learning
    assert published[-1].states_seen == len(trainer.q_table)
    assert published[-1].as_dict()["episode_count"] == trainer.episode_count


def test_layout_changes_are_refused_while_learning():
    trainer = make_trainer()
    trainer.start()
    with pytest.raises(ValueError):
        trainer.set_size(8, 8)
    with pytest.raises(ValueError):
        trainer.set_wall_pattern(WallPattern.BORDER)


def test_layout_changes_when_idle():
    trainer = make_trainer()
    trainer.set_size(8, 4)
    assert trainer.world.size == (8, 4)
    assert trainer.state.shape == (8, 4)

    trainer.set_wall_pattern(WallPattern.BORDER)
    assert trainer.actor.position == (4, 2)
    assert trainer.world.breakable_wall_count == 2 * 8 + 2 * 4 - 4

    with pytest.raises(ValueError):
        trainer.set_size(0, 4)
    assert trainer.world.size == (8, 4)

    trainer.start()
    assert trainer.world.size == (8, 4)
    assert trainer.world.pattern == WallPattern.BORDER


def test_play_step_runs_the_greedy_policy():
    trainer = make_trainer(max_turns=3, max_episodes=2)
    assert trainer.play_step() is not None
    trainer.train()
    episodes = trainer.episode_count
    table_size = len(trainer.q_table)
    snapshot = {s: trainer.q_table.values(s).copy() for s in list(trainer.q_table._values)}

    for _ in range(10):
        result = trainer.play_step()
        assert result.action in AgentAction

    assert trainer.episode_count == episodes
    for state, values in snapshot.items():
        assert np.array_equal(trainer.q_table.values(state), values)
    assert len(trainer.q_table) >= table_size


def test_play_step_advances_only_the_turn_counter():
    trainer = make_trainer(max_turns=50, max_episodes=2)
    trainer.train()
    before = trainer.stats()

    result = trainer.play_step()
    after = trainer.stats()

    assert after.turn_count == (0 if result.episode_ended else before.turn_count + 1)
    assert after.episode_count == before.episode_count
    assert after.win_count == before.win_count
    assert after.overall_win_rate == before.overall_win_rate
    assert after.recent_win_rate == before.recent_win_rate


def test_play_step_is_refused_while_learning():
    trainer = make_trainer()
    trainer.start()
    assert trainer.play_step() is None


def test_same_seed_same_run():
    first = make_trainer(seed=42, max_turns=5, max_episodes=5)
    second = make_trainer(seed=42, max_turns=5, max_episodes=5)
    first.train()
    second.train()
    assert first.stats() == second.stats()
