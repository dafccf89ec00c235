"""
Initialize the exam_portal database - creates database and all tables.
Run this once before using the app.
"""

import pymysql

import config

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id INT AUTO_INCREMENT PRIMARY KEY,
        emp_id VARCHAR(100) NOT NULL UNIQUE,
        name VARCHAR(255) NULL,
        role ENUM('examinee', 'admin') NOT NULL DEFAULT 'examinee',
        team VARCHAR(50) NOT NULL DEFAULT 'A',
        is_active TINYINT(1) NOT NULL DEFAULT 1,
        password_hash VARCHAR(255) NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        INDEX idx_accounts_team (team)
    ) ENGINE=InnoDB
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id INT AUTO_INCREMENT PRIMARY KEY,
        team VARCHAR(50) NOT NULL DEFAULT 'A',
        content TEXT NOT NULL,
        choices JSON NOT NULL,
        correct_index INT NOT NULL,
        points INT NOT NULL DEFAULT 1,
        is_active TINYINT(1) NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
        CHECK (correct_index >= 0),
        CHECK (points >= 1),
        INDEX idx_questions_team_active (team, is_active)
    ) ENGINE=InnoDB
    """,
    """
    CREATE TABLE IF NOT EXISTS attempts (
        id INT AUTO_INCREMENT PRIMARY KEY,
        emp_id VARCHAR(100) NOT NULL,
        team VARCHAR(50) NULL,
        question_ids JSON NOT NULL,
        status ENUM('in_progress', 'submitted') NOT NULL DEFAULT 'in_progress',
        score INT NOT NULL DEFAULT 0,
        total_points INT NOT NULL DEFAULT 0,
        correct_count INT NOT NULL DEFAULT 0,
        duration_sec INT NULL,
        auto_submitted TINYINT(1) NOT NULL DEFAULT 0,
        is_late TINYINT(1) NOT NULL DEFAULT 0,
        started_at DATETIME NOT NULL,
        submitted_at DATETIME NULL,
        FOREIGN KEY (emp_id) REFERENCES accounts(emp_id) ON DELETE CASCADE ON UPDATE CASCADE,
        INDEX idx_attempts_emp (emp_id),
        INDEX idx_attempts_team_status (team, status)
    ) ENGINE=InnoDB
    """,
    # question_id has no foreign key: questions may be hard-deleted after an attempt used them
    """
    CREATE TABLE IF NOT EXISTS attempt_answers (
        id INT AUTO_INCREMENT PRIMARY KEY,
        attempt_id INT NOT NULL,
        question_id INT NOT NULL,
        selected_index INT NULL,
        is_correct TINYINT(1) NOT NULL DEFAULT 0,
        points INT NOT NULL DEFAULT 0,
        FOREIGN KEY (attempt_id) REFERENCES attempts(id) ON DELETE CASCADE,
        UNIQUE KEY unique_attempt_question (attempt_id, question_id)
    ) ENGINE=InnoDB
    """,
]


def init_database():
    # Connect without specifying database (to create it)
    conn = pymysql.connect(
        host=config.DB_CONFIG['host'],
        port=config.DB_CONFIG['port'],
        user=config.DB_CONFIG['user'],
        password=config.DB_CONFIG['password'],
        charset='utf8mb4'
    )
    db_name = config.DB_CONFIG['database']
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"CREATE DATABASE IF NOT EXISTS `{db_name}` "
                "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
            cur.execute(f"USE `{db_name}`")
            for statement in SCHEMA:
                cur.execute(statement)
        conn.commit()
        print(f"Database '{db_name}' and tables created successfully!")
    finally:
        conn.close()


if __name__ == '__main__':
    init_database()
