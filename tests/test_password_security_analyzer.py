"""Tests for the password security analyzer."""

import pytest

from larashield.analyzers.password_security import PasswordSecurityAnalyzer, format_duration
from larashield.models import Severity, Status


def issues_of_type(result, issue_type):
    return [i for i in result.issues if i.metadata.get("issue_type") == issue_type]


def service(body):
    """Wrap statements in a service class method."""
    indented = "\n".join("                    " + line for line in body.strip().splitlines())
    return f"""
        <?php
        namespace App\\Services;

        class AccountService
        {{
            public function handle($request, $user)
            {{
{indented}
            }}
        }}
    """


class TestHashingConfig:
    """config/hashing.php strength checks."""

    def test_low_bcrypt_rounds(self, make_project, run_analyzer):
        base = make_project({"config/hashing.php": """
            <?php
            return [
                'driver' => 'bcrypt',
                'bcrypt' => [
                    'rounds' => 8,
                ],
            ];
        """})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert result.status == Status.FAILED
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.severity == Severity.CRITICAL
        assert "Bcrypt rounds" in issue.message
        assert issue.metadata["rounds"] == 8
        assert issue.location.file == "config/hashing.php"
        assert issue.location.line == 5

    def test_env_default_rounds_and_configured_minimum(self, make_project, run_analyzer):
        base = make_project({"config/hashing.php": """
            <?php
            return [
                'bcrypt' => ['rounds' => env('BCRYPT_ROUNDS', 12)],
            ];
        """})
        assert run_analyzer(PasswordSecurityAnalyzer, base).status == Status.PASSED
        config = {"security": {"password_security": {"bcrypt_min_rounds": 14}}}
        result = run_analyzer(PasswordSecurityAnalyzer, base, config)
        assert issues_of_type(result, "weak_bcrypt_rounds")[0].message == (
            "Bcrypt rounds (12) is below recommended minimum of 14")

    def test_weak_driver(self, make_project, run_analyzer):
        base = make_project({"config/hashing.php": """
            <?php
            return ['driver' => 'md5'];
        """})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        issues = issues_of_type(result, "weak_driver")
        assert len(issues) == 1
        assert issues[0].severity == Severity.CRITICAL

    def test_weak_argon_parameters(self, make_project, run_analyzer):
        base = make_project({"config/hashing.php": """
            <?php
            return [
                'driver' => 'argon2id',
                'argon' => [
                    'memory' => 1024,
                    'threads' => 1,
                    'time' => 1,
                ],
            ];
        """})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        severities = {i.metadata["issue_type"]: i.severity for i in result.issues}
        assert severities == {
            "weak_argon2_memory": Severity.CRITICAL,
            "weak_argon2_time": Severity.MEDIUM,
            "weak_argon2_threads": Severity.LOW,
        }


class TestPlainTextStorage:
    """Assignments and payloads storing unhashed passwords."""

    def test_hashed_assignment_is_safe(self, make_project, run_analyzer):
        base = make_project({"app/Services/AccountService.php": service(
            "$user->password = Hash::make($request->password);")})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert issues_of_type(result, "plain_text_password") == []
        assert result.status == Status.PASSED

    def test_raw_assignment_is_flagged(self, make_project, run_analyzer):
        base = make_project({"app/Services/AccountService.php": service(
            "$user->password = $request->password;")})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        issues = issues_of_type(result, "plain_text_password")
        assert len(issues) == 1
        assert issues[0].severity == Severity.MEDIUM
        assert issues[0].message == "Potential plain-text password storage detected"
        assert issues[0].code == "$user->password = $request->password;"
        assert result.status == Status.WARNING

    @pytest.mark.parametrize("body", [
        "$user->password = $request->filled('password') ? Hash::make($request->password) : $user->password;",
        "$user->password = bcrypt($request->input('password'));",
        "$user->password = $request->password;\n$user->password = Hash::make($user->password);",
        "$hashed = Hash::make($request->password);\n$user->password = $hashed;",
        "$user->password = 'placeholder';",
    ])
    def test_safe_patterns(self, make_project, run_analyzer, body):
        base = make_project({"app/Services/AccountService.php": service(body)})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert issues_of_type(result, "plain_text_password") == []

    def test_plain_local_variable_is_flagged(self, make_project, run_analyzer):
        body = "$plain = $request->input('password');\n$user->password = $plain;"
        base = make_project({"app/Services/AccountService.php": service(body)})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert len(issues_of_type(result, "plain_text_password")) == 1

    def test_create_payload(self, make_project, run_analyzer):
        body = """
            User::create(['name' => $request->name, 'password' => $request->password]);
            User::create(['name' => $request->name, 'password' => Hash::make($request->password)]);
            $model = new User(['password' => $request->input('password')]);
        """
        base = make_project({"app/Services/AccountService.php": service(body)})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        issues = issues_of_type(result, "plain_text_password")
        assert [i.metadata["context"] for i in issues] == ["payload", "payload"]
        assert [i.location.line for i in issues] == [8, 10]

    def test_different_findings_on_one_line_are_kept(self, make_project, run_analyzer):
        body = "User::create(['password' => $request->password, 'legacy' => sha1($request->password)]);"
        base = make_project({"app/Services/AccountService.php": service(body)})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        found = sorted((i.metadata["issue_type"], i.location.line) for i in result.issues)
        assert found == [("plain_text_password", 8), ("weak_hash_function", 8)]

    def test_incrementally_built_payload(self, make_project, run_analyzer):
        body = """
            $data = [];
            $data['email'] = $request->email;
            $data['password'] = $request->password;
            DB::table('users')->insert($data);
        """
        base = make_project({"app/Services/AccountService.php": service(body)})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert len(issues_of_type(result, "plain_text_password")) == 1

    def test_seeders_are_skipped(self, make_project, run_analyzer):
        base = make_project({"database/seeders/UserSeeder.php": service(
            "$user->password = $request->password;")})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert result.issues == []


class TestWeakHashing:
    """md5/sha1 applied to passwords."""

    def test_md5_of_password(self, make_project, run_analyzer):
        base = make_project({"app/Services/AccountService.php": service(
            "$digest = md5($request->password);")})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        issues = issues_of_type(result, "weak_hash_function")
        assert len(issues) == 1
        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].metadata["function"] == "md5"
        assert result.status == Status.FAILED

    def test_hash_with_weak_algorithm(self, make_project, run_analyzer):
        base = make_project({"app/Services/AccountService.php": service(
            "$a = hash('sha1', $password);\n$b = hash('sha256', $password);")})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert [i.metadata["function"] for i in issues_of_type(result, "weak_hash_function")] == ["sha1"]

    def test_allowed_patterns_and_non_password_input(self, make_project, run_analyzer):
        body = """
            $key = md5($password . 'cache');
            $etag = sha1($request->email);
        """
        base = make_project({"app/Services/AccountService.php": service(body)})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        assert issues_of_type(result, "weak_hash_function") == []


class TestPolicy:
    """Validation rules, Password::defaults() and the confirmation timeout."""

    def test_weak_validation_rules(self, make_project, run_analyzer):
        base = make_project({"app/Http/Requests/RegisterRequest.php": """
            <?php
            class RegisterRequest extends FormRequest
            {
                public function rules()
                {
                    return [
                        'email' => 'required|email|min:3',
                        'password' => 'required|min:6|confirmed',
                        'new_password' => ['required', Password::min(4)->letters()],
                    ];
                }
            }
        """})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        issues = issues_of_type(result, "weak_validation_min_length")
        assert [i.metadata["min_length"] for i in issues] == [6, 4]

    def test_missing_password_defaults(self, make_project, run_analyzer):
        base = make_project({"app/Providers/AppServiceProvider.php": """
            <?php
            class AppServiceProvider extends ServiceProvider
            {
                public function boot() {}
            }
        """})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        issues = issues_of_type(result, "missing_password_defaults")
        assert len(issues) == 1
        assert issues[0].location.file == "app/Providers/AppServiceProvider.php"

    def test_weak_password_defaults(self, make_project, run_analyzer):
        base = make_project({"app/Providers/AppServiceProvider.php": """
            <?php
            class AppServiceProvider extends ServiceProvider
            {
                public function boot()
                {
                    Password::defaults(fn () => Password::min(6));
                }
            }
        """})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        types = sorted(i.metadata["issue_type"] for i in result.issues)
        assert types == ["no_breached_password_check", "no_mixed_case_requirement",
                         "weak_password_min_length"]
        assert result.status == Status.WARNING

    def test_strong_password_defaults(self, make_project, run_analyzer):
        base = make_project({"app/Providers/AppServiceProvider.php": """
            <?php
            class AppServiceProvider extends ServiceProvider
            {
                public function boot()
                {
                    Password::defaults(function () {
                        return Password::min(12)->mixedCase()->numbers()->uncompromised();
                    });
                }
            }
        """})
        assert run_analyzer(PasswordSecurityAnalyzer, base).status == Status.PASSED

    def test_long_confirmation_timeout(self, make_project, run_analyzer):
        base = make_project({"config/auth.php": """
            <?php
            return [
                'password_timeout' => env('AUTH_PASSWORD_TIMEOUT', 10800),
            ];
        """})
        result = run_analyzer(PasswordSecurityAnalyzer, base)
        issues = issues_of_type(result, "long_password_confirmation_timeout")
        assert len(issues) == 1
        assert "(3h)" in issues[0].message
        assert issues[0].severity == Severity.LOW

    @pytest.mark.parametrize("seconds, expected", [(10800, "3h"), (5400, "1h 30m"), (900, "15m")])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestLifecycle:
    """Skip behaviour and metadata."""

    def test_skips_empty_project(self, tmp_path, run_analyzer):
        assert run_analyzer(PasswordSecurityAnalyzer, tmp_path).status == Status.SKIPPED

    def test_not_run_in_ci(self):
        meta = PasswordSecurityAnalyzer().metadata()
        assert meta.run_in_ci is False
        assert meta.severity == Severity.CRITICAL
