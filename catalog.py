"""
Static learning content and minigame configuration.

Loaded once at import; nothing in the core mutates it.
"""
from typing import Dict, List

from errors import NotFound
from schemas import GameConfig, Lesson, Module, PracticeTask, Quiz, QuizQuestion


def _lessons(module_id: str, *rows) -> List[Lesson]:
    return [
        Lesson(id=lid, module_id=module_id, title=title, description=desc, duration=minutes, order=i)
        for i, (lid, title, desc, minutes) in enumerate(rows, start=1)
    ]


def _questions(*rows) -> List[QuizQuestion]:
    return [
        QuizQuestion(id=qid, question=text, options=options, correct_index=answer)
        for qid, text, options, answer in rows
    ]


MODULES: List[Module] = [
    Module(
        id="wallet-basics",
        name="Your First Wallet",
        description="Learn what a crypto wallet is and how to keep it safe",
        icon="wallet",
        required_level=1,
        xp_reward=150,
        badge_id="badge-wallet-master",
        order=1,
        lessons=_lessons(
            "wallet-basics",
            ("wb-1", "What is a Crypto Wallet?", "Understanding the basics of digital wallets", 5),
            ("wb-2", "Seed Phrases Explained", "Your wallet's master key", 7),
            ("wb-3", "Security Best Practices", "Keep your crypto safe", 6),
        ),
        quiz=Quiz(
            id="wb-quiz",
            module_id="wallet-basics",
            questions=_questions(
                ("wb-q1", "What is a seed phrase used for?",
                 ["To recover your wallet", "To send transactions faster", "To earn more crypto",
                  "To change your wallet address"], 0),
                ("wb-q2", "Who should you share your seed phrase with?",
                 ["Customer support", "Close friends", "No one, ever", "Your bank"], 2),
                ("wb-q3", "Where is the safest place to store your seed phrase?",
                 ["In a screenshot on your phone", "In a notes app", "Written on paper, stored offline",
                  "In an email to yourself"], 2),
            ),
        ),
        practice_task=None,
    ),
    Module(
        id="first-transaction",
        name="Send & Receive",
        description="Make your first crypto transaction on testnet",
        icon="swap-horizontal",
        required_level=1,
        xp_reward=200,
        badge_id="badge-first-tx",
        order=2,
        lessons=_lessons(
            "first-transaction",
            ("ft-1", "How Transactions Work", "Understanding blockchain transfers", 8),
            ("ft-2", "Addresses & Fees", "The basics of sending and receiving", 6),
        ),
        quiz=Quiz(
            id="ft-quiz",
            module_id="first-transaction",
            questions=_questions(
                ("ft-q1", "What do you need to send crypto to someone?",
                 ["Their phone number", "Their wallet address", "Their email", "Their name"], 1),
                ("ft-q2", "What are transaction fees used for?",
                 ["To pay the company that made the blockchain", "To pay validators who process transactions",
                  "To pay the government", "Fees don't exist in crypto"], 1),
            ),
        ),
        practice_task=PracticeTask(
            id="ft-practice",
            module_id="first-transaction",
            title="Send Your First Transaction",
            description="Practice sending testnet tokens",
            type="transaction",
            instructions=[
                "Connect your testnet wallet",
                "Request testnet tokens from the faucet",
                "Send 1 test token to the practice address",
                "Wait for confirmation",
            ],
            validation_criteria="tx_confirmed",
        ),
    ),
    Module(
        id="defi-intro",
        name="What is a Swap?",
        description="Learn about decentralized exchanges and make your first swap",
        icon="repeat",
        required_level=2,
        xp_reward=250,
        badge_id="badge-defi-beginner",
        order=3,
        lessons=_lessons(
            "defi-intro",
            ("di-1", "DEX vs CEX", "Decentralized vs Centralized exchanges", 10),
            ("di-2", "How Swaps Work", "Understanding liquidity pools", 12),
            ("di-3", "Slippage & Price Impact", "Important concepts for trading", 8),
        ),
        quiz=Quiz(
            id="di-quiz",
            module_id="defi-intro",
            questions=_questions(
                ("di-q1", "What is a DEX?",
                 ["A type of cryptocurrency", "A decentralized exchange", "A digital wallet",
                  "A blockchain network"], 1),
                ("di-q2", "What is slippage?",
                 ["A transaction error", "The difference between expected and actual price", "A type of fee",
                  "A security feature"], 1),
            ),
        ),
        practice_task=PracticeTask(
            id="di-practice",
            module_id="defi-intro",
            title="Make Your First Swap",
            description="Swap testnet tokens on Soroswap",
            type="swap",
            instructions=[
                "Connect to Soroswap testnet",
                "Select tokens to swap",
                "Review the quote and fees",
                "Execute the swap",
                "View transaction on explorer",
            ],
            validation_criteria="swap_confirmed",
        ),
    ),
]


def _bank(*rows) -> List[QuizQuestion]:
    return [
        QuizQuestion(id=qid, question=text, options=options, correct_index=0,
                     category=category, difficulty=difficulty)
        for qid, category, difficulty, text, options in rows
    ]


# Question bank for the Crypto Quiz minigame; the right answer is listed first
# and the draw shuffles question order only.
QUIZ_QUESTIONS: List[QuizQuestion] = _bank(
    ("b1", "basics", "easy", 'What does "HODL" mean in crypto?',
     ["Hold On for Dear Life", "High Order Digital Ledger", "Hash Output Data Link",
      "Honest Open Decentralized Ledger"]),
    ("b2", "basics", "easy", "What is the maximum supply of Bitcoin?",
     ["21 million", "100 million", "Unlimited", "18 million"]),
    ("b3", "basics", "easy", "Who created Bitcoin?",
     ["Satoshi Nakamoto", "Vitalik Buterin", "Charlie Lee", "Elon Musk"]),
    ("w1", "wallets", "easy", "What is a seed phrase?",
     ["Backup words for wallet recovery", "Password for exchanges", "A type of token", "Mining software"]),
    ("w3", "wallets", "easy", "What is a private key used for?",
     ["Signing transactions", "Receiving crypto", "Mining blocks", "Creating tokens"]),
    ("w5", "wallets", "easy", 'What is a "cold wallet"?',
     ["Offline storage", "Online wallet", "Mobile app", "Browser extension"]),
    ("d1", "defi", "easy", "What does DEX stand for?",
     ["Decentralized Exchange", "Digital Exchange", "Direct Exchange", "Distributed Exchange"]),
    ("d2", "defi", "medium", "What is a liquidity pool?",
     ["Tokens locked for trading", "A type of wallet", "Mining equipment", "A blockchain network"]),
    ("d4", "defi", "medium", "What is an AMM?",
     ["Automated Market Maker", "Advanced Mining Machine", "Asset Management Module", "Automatic Money Mover"]),
    ("s1", "security", "easy", "What is 2FA?",
     ["Two-Factor Authentication", "Two-File Archive", "Transfer Fee Amount", "Token Format Address"]),
    ("s2", "security", "easy", "What is a phishing attack?",
     ["Fake site stealing info", "Mining attack", "Network spam", "Token duplication"]),
    ("s4", "security", "medium", "What is a rug pull?",
     ["Developers abandoning project", "Price increase", "Network upgrade", "Token airdrop"]),
    ("t1", "trading", "medium", "What is a limit order?",
     ["Buy/sell at specific price", "Buy at market price", "Automatic trading", "Margin trade"]),
    ("t3", "trading", "easy", "What is a market order?",
     ["Buy/sell at current price", "Scheduled purchase", "Limit trade", "Stop loss"]),
    ("bc1", "blockchain", "easy", "What is a blockchain?",
     ["Distributed ledger", "Cryptocurrency", "Wallet type", "Trading platform"]),
    ("bc2", "blockchain", "easy", "What is a block in blockchain?",
     ["Group of transactions", "Single transaction", "Wallet address", "Private key"]),
)

GAMES: Dict[str, GameConfig] = {
    "crypto-quiz": GameConfig(
        id="crypto-quiz",
        name="Crypto Quiz",
        question_count=10,
        time_per_question=15,
        base_xp=30,
        max_plays=3,
    ),
}

# Flat XP granted for finishing a lesson for the first time
LESSON_XP = 20


def get_module(module_id: str) -> Module:
    for module in MODULES:
        if module.id == module_id:
            return module
    raise NotFound("module", module_id)

