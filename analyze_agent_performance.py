import argparse
from collections import defaultdict

import numpy as np

from actor import AgentAction, ACTION_EFFECTS
from events import WALL_BROKEN
from q_learning import OUTCOME_DIED, OUTCOME_WON, OUTCOME_TIMEOUT

# Episode outcome categories reported by the analysis
EPISODE_OUTCOMES = {
    OUTCOME_DIED: "Agent_Died",
    OUTCOME_WON: "Win_Walls_Cleared",
    OUTCOME_TIMEOUT: "Timeout_Max_Steps",
}


def analyze_performance(trainer, num_episodes=100):
    """Plays greedy episodes with the trainer's table and aggregates the results.

    The trainer must not be learning. Each episode starts on a freshly generated
    arena.

    Args:
        trainer (Trainer): A trainer whose run has finished or was stopped.
        num_episodes (int): Number of episodes to play.

    Returns:
        dict: Aggregated episode statistics.
    """
    assert not trainer.learning, 'Stop learning before analysing the greedy policy.'
    trainer.new_episode()

    walls_broken = []
    listener = trainer.events.subscribe(WALL_BROKEN, walls_broken.append)

    outcome_counts = defaultdict(int)
    action_counts = defaultdict(int)
    episode_total_rewards = []
    episode_lengths = []
    episode_walls_broken = []
    episode_bombs_placed = []

    for _ in range(num_episodes):
        current_episode_reward = 0.0
        current_episode_length = 0
        current_episode_bombs_placed = 0

        del walls_broken[:]
        while True:
            result = trainer.play_step()
            current_episode_reward += result.reward
            current_episode_length += 1
            action_counts[result.action.name] += 1
            if ACTION_EFFECTS[result.action][1]:
                current_episode_bombs_placed += 1

            if result.episode_ended:
                episode_walls_broken.append(len(walls_broken))
                outcome_counts[result.outcome] += 1
                break

        episode_total_rewards.append(current_episode_reward)
        episode_lengths.append(current_episode_length)
        episode_bombs_placed.append(current_episode_bombs_placed)

    trainer.events.unsubscribe(WALL_BROKEN, listener)

    return {
        "num_episodes": num_episodes,
        "avg_reward": float(np.mean(episode_total_rewards)) if episode_total_rewards else 0.0,
        "std_reward": float(np.std(episode_total_rewards)) if episode_total_rewards else 0.0,
        "avg_length": float(np.mean(episode_lengths)) if episode_lengths else 0.0,
        "avg_walls_broken": float(np.mean(episode_walls_broken)) if episode_walls_broken else 0.0,
        "avg_bombs_placed": float(np.mean(episode_bombs_placed)) if episode_bombs_placed else 0.0,
        "outcomes": dict(outcome_counts),
        "actions": dict(action_counts),
    }


def print_report(report):
    num_episodes = report["num_episodes"]
    print("\n--- Agent Performance Analysis ---")
    print(f"Total episodes: {num_episodes}")

    print("\n--- General Episode Stats ---")
    print(f"Average Episode Reward: {report['avg_reward']:.2f} +/- {report['std_reward']:.2f}")
    print(f"Average Episode Length: {report['avg_length']:.2f} steps")
    print(f"Average Walls Broken per Episode: {report['avg_walls_broken']:.2f}")
    print(f"Average Bombs Placed per Episode: {report['avg_bombs_placed']:.2f}")

    print("\n--- Episode Outcome Breakdown ---")
    for outcome, label in EPISODE_OUTCOMES.items():
        count = report["outcomes"].get(outcome, 0)
        percentage = (count / num_episodes) * 100 if num_episodes else 0.0
        print(f"  {label+':':<25} Count: {count:>5} ({percentage:.1f}% of episodes)")

    print("\n--- Action Usage ---")
    for action in AgentAction:
        print(f"  {action.name+':':<15} {report['actions'].get(action.name, 0):>7}")

    print("\nAnalysis complete.")


if __name__ == '__main__':
    from train_tabular_agent import build_config, parse_args as parse_train_args
    from q_learning import Trainer

    parser = argparse.ArgumentParser(description='Train, then analyse the greedy policy of a tabular agent.')
    parser.add_argument('--num-episodes', type=int, default=100, help='Number of greedy episodes to simulate.')
    args, remaining = parser.parse_known_args()

    trainer = Trainer(build_config(parse_train_args(remaining)))
    trainer.train()
    print_report(analyze_performance(trainer, num_episodes=args.num_episodes))
