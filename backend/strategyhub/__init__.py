# StrategyHub Backend Application
