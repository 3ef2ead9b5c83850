from collections import deque
from dataclasses import dataclass, asdict

import numpy as np

from actor import Actor, AgentAction, NUM_ACTIONS, RewardConfig, DEFAULT_BOMB_TIMER
from arena import GridWorld, WallPattern, DEFAULT_SIZE
from events import EventChannel, EPISODE_STEPPED, LEARNING_CHANGED

# Lower bound the decayed epsilon and alpha approach at the last episode
DECAY_FLOOR = 0.001

# Number of most recent episodes used for the recent win rate
RECENT_WINDOW = 100

OUTCOME_DIED = "died"
OUTCOME_WON = "won"
OUTCOME_TIMEOUT = "timeout"


@dataclass
class TrainerConfig:
    """Hyperparameters and arena settings for a training run."""
    epsilon: float = 0.2
    alpha: float = 0.1
    gamma: float = 0.9
    max_episodes: int = 1000
    max_turns: int = 100          # per episode
    parameter_decay: bool = True
    width: int = DEFAULT_SIZE[0]
    height: int = DEFAULT_SIZE[1]
    wall_pattern: WallPattern = WallPattern.SPLIT
    bomb_timer: int = DEFAULT_BOMB_TIMER

    def validate(self):
        if not 0.0 <= self.epsilon <= 1.0:
            raise ValueError(f"epsilon must be in [0, 1], got {self.epsilon}")
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError(f"alpha must be in [0, 1], got {self.alpha}")
        if not 0.0 <= self.gamma <= 1.0:
            raise ValueError(f"gamma must be in [0, 1], got {self.gamma}")
        if self.max_episodes < 0:
            raise ValueError(f"max_episodes must be non-negative, got {self.max_episodes}")
        if self.max_turns < 0:
            raise ValueError(f"max_turns must be non-negative, got {self.max_turns}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Arena size must be positive, got {self.width}x{self.height}")
        if self.bomb_timer < 1:
            raise ValueError(f"bomb_timer must be at least 1, got {self.bomb_timer}")
        self.wall_pattern = WallPattern(self.wall_pattern)
        return self


@dataclass
class TrainingStats:
    learning: bool
    episode_count: int
    turn_count: int
    win_count: int
    overall_win_rate: float
    recent_win_rate: float
    decayed_epsilon: float
    decayed_alpha: float
    states_seen: int

    def as_dict(self):
        return asdict(self)


@dataclass
class StepResult:
    action: AgentAction
    reward: float
    episode_ended: bool
    outcome: str = None    # OUTCOME_* when the episode ended


class QTable:
    """Sparse map from AgentState to one value per action.

    Entries are created on first access and never evicted.
    """

    def __init__(self, num_actions=NUM_ACTIONS):
        self.num_actions = num_actions
        self._values = {}

    def values(self, state):
        q_values = self._values.get(state)
        if q_values is None:
            q_values = np.zeros(self.num_actions, dtype=np.float64)
            self._values[state] = q_values
        return q_values

    def set_value(self, state, action, value):
        self.values(state)[int(action)] = value

    def clear(self):
        self._values.clear()

    def __len__(self):
        return len(self._values)

    def __contains__(self, state):
        return state in self._values


def decayed_parameter(value, episode_count, max_episodes, decay, floor=DECAY_FLOOR):
    """Linearly moves value toward floor as training progresses.

    A zero max_episodes means there is no schedule to follow, so the value is
    returned unchanged.
    """
    if not decay or max_episodes <= 0:
        return value
    progress = min(max(episode_count / max_episodes, 0.0), 1.0)
    return value + (floor - value) * progress


def bellman_update(old_value, reward, next_max, alpha, gamma):
    return old_value + alpha * (reward + gamma * next_max - old_value)


class Trainer:
    def __init__(self, config=None, rewards=None, events=None, seed=None, verbose=False):
        '''Set up the arena, the actor and an empty Q-table. Learning starts with start().'''
        self.config = (config if config is not None else TrainerConfig()).validate()
        self.rewards = rewards if rewards is not None else RewardConfig()
        self.events = events if events is not None else EventChannel()
        self.verbose = verbose
        self.rng = np.random.default_rng(seed)

        self.world = GridWorld(self.config.width, self.config.height, self.config.wall_pattern,
                               events=self.events, verbose=verbose)
        self.actor = Actor(self.world, bomb_timer=self.config.bomb_timer, rewards=self.rewards)
        self.q_table = QTable()

        self._learning = False
        self.decayed_epsilon = 0.0
        self.decayed_alpha = 0.0
        self._reset_counters()
        self.state = self.actor.snapshot()

    def _reset_counters(self):
        self.episode_count = 0
        self.turn_count = 0
        self.win_count = 0
        self.overall_win_rate = 0.0
        self.recent_win_rate = 0.0
        self.recent_wins = deque(maxlen=RECENT_WINDOW)

    @property
    def learning(self):
        return self._learning

    @learning.setter
    def learning(self, value):
        if value:
            self.start()
        else:
            self.stop()

    def new_episode(self, **layout):
        spawn = self.world.generate(**layout)
        self.actor.reset(spawn)
        self.turn_count = 0
        self.state = self.actor.snapshot()

    def start(self):
        """Begins a fresh training run with an empty table."""
        self.config.validate()
        self.q_table = QTable()
        self.actor.bomb_timer = self.config.bomb_timer
        self._reset_counters()
        self.new_episode(width=self.config.width, height=self.config.height,
                          pattern=self.config.wall_pattern)
        self._learning = True
        if self.verbose:
            print(f"[INFO] Learning started: {self.config}")
        self.events.publish(LEARNING_CHANGED, True)

    def stop(self):
        """Ends the run. The table and counters are kept."""
        self.decayed_epsilon = 0.0
        self.decayed_alpha = 0.0
        self._learning = False
        if self.verbose:
            print(f"[INFO] Learning stopped after {self.episode_count} episodes, "
                  f"{self.win_count} wins, {len(self.q_table)} states")
        self.events.publish(LEARNING_CHANGED, False)

    def set_size(self, width, height):
        if self._learning:
            raise ValueError("Arena size cannot change while learning")
        spawn = self.world.set_size(width, height)
        self.config.width, self.config.height = self.world.width, self.world.height
        self.actor.reset(spawn)
        self.state = self.actor.snapshot()

    def set_wall_pattern(self, pattern):
        if self._learning:
            raise ValueError("Wall pattern cannot change while learning")
        self.config.wall_pattern = WallPattern(pattern)
        self.actor.reset(self.world.set_pattern(pattern))
        self.state = self.actor.snapshot()

    def update_parameters(self):
        self.decayed_epsilon = decayed_parameter(self.config.epsilon, self.episode_count,
                                                 self.config.max_episodes, self.config.parameter_decay)
        self.decayed_alpha = decayed_parameter(self.config.alpha, self.episode_count,
                                               self.config.max_episodes, self.config.parameter_decay)
        return self.decayed_epsilon, self.decayed_alpha

    def select_action(self, state, legal_actions, epsilon):
        """Epsilon-greedy choice among the legal actions.

        When exploiting, ordinals are scanned in increasing order and only a
        strictly larger value replaces the current best, so ties keep the
        lowest ordinal.
        """
        if self.rng.random() < epsilon:
            return legal_actions[int(self.rng.integers(len(legal_actions)))]

        q_values = self.q_table.values(state)
        best_action = legal_actions[0]
        best_value = float("-inf")
        for action in sorted(legal_actions):
            if q_values[int(action)] > best_value:
                best_value = q_values[int(action)]
                best_action = action
        return best_action

    def _episode_outcome(self, reward):
        if reward == self.rewards.death:
            return OUTCOME_DIED
        if self.world.breakable_wall_count == 0:
            return OUTCOME_WON
        if self.turn_count > self.config.max_turns:
            return OUTCOME_TIMEOUT
        return None

    def _finish_episode(self, outcome):
        win = self.world.breakable_wall_count == 0
        if win:
            self.win_count += 1
        self.recent_wins.append(win)
        self.episode_count += 1
        self.overall_win_rate = self.win_count / self.episode_count
        self.recent_win_rate = sum(self.recent_wins) / min(self.episode_count, RECENT_WINDOW)

        if self.verbose:
            print(f"[INFO] Episode {self.episode_count} ended ({outcome}) after {self.turn_count} turns | "
                  f"win rate {self.overall_win_rate:.3f}, recent {self.recent_win_rate:.3f}, "
                  f"epsilon {self.decayed_epsilon:.5f}, alpha {self.decayed_alpha:.5f}")

        # a fresh board is laid out either way so greedy play can continue after the run
        self.new_episode()
        if self.episode_count > self.config.max_episodes:
            self.stop()

    def step(self):
        """Runs one transition and one Q-value update.

        Returns:
            StepResult: What happened, or None when not learning.
        """
        if not self._learning:
            return None

        epsilon, alpha = self.update_parameters()

        legal_actions = self.actor.legal_actions()
        action = self.select_action(self.state, legal_actions, epsilon)

        next_state, reward = self.actor.execute(action)

        old_value = self.q_table.values(self.state)[int(action)]
        next_max = float(np.max(self.q_table.values(next_state)))
        self.q_table.set_value(self.state, action,
                               bellman_update(old_value, reward, next_max, alpha, self.config.gamma))

        self.state = next_state
        self.turn_count += 1

        outcome = self._episode_outcome(reward)
        if outcome is not None:
            self._finish_episode(outcome)

        self.events.publish(EPISODE_STEPPED, self.stats())
        return StepResult(action=action, reward=reward, episode_ended=outcome is not None, outcome=outcome)

    def play_step(self):
        """Greedy step over the learned table while not learning.

        The table is read but never updated, and the episode and win counters
        are left alone. The turn counter still advances so max_turns ends
        greedy episodes too; a finished episode resets it and regenerates the
        arena.

        Returns:
            StepResult: What happened, or None while learning.
        """
        if self._learning:
            return None

        legal_actions = self.actor.legal_actions()
        action = self.select_action(self.state, legal_actions, 0.0)
        next_state, reward = self.actor.execute(action)
        self.state = next_state
        self.turn_count += 1

        outcome = self._episode_outcome(reward)
        if outcome is not None:
            self.new_episode()
        return StepResult(action=action, reward=reward, episode_ended=outcome is not None, outcome=outcome)

    def train(self, max_steps=None):
        """Drives step() until learning stops or max_steps is reached. Returns the steps taken."""
        if not self._learning:
            self.start()
        steps = 0
        while self._learning and (max_steps is None or steps < max_steps):
            self.step()
            steps += 1
        return steps

    def stats(self):
        return TrainingStats(
            learning=self._learning,
            episode_count=self.episode_count,
            turn_count=self.turn_count,
            win_count=self.win_count,
            overall_win_rate=self.overall_win_rate,
            recent_win_rate=self.recent_win_rate,
            decayed_epsilon=self.decayed_epsilon,
            decayed_alpha=self.decayed_alpha,
            states_seen=len(self.q_table),
        )
